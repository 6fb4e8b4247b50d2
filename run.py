"""Development server for the tree storage API."""
import os

from gedtree import create_app

app = create_app({
    "SQLITE_BUSY_TIMEOUT": float(os.environ.get("APP_SQLITE_BUSY_TIMEOUT", "5")),
})

if __name__ == "__main__":
    host = os.environ.get("APP_BIND_HOST", "127.0.0.1")
    port = int(os.environ.get("APP_PORT", "3001"))
    debug = os.environ.get("APP_DEBUG", "0") == "1"

    app.logger.info("Serving gedtree API on %s:%s", host, port)
    app.run(host=host, port=port, debug=debug)
