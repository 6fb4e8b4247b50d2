from flask import Flask
from pathlib import Path
import os

__version__ = "1.0.0"

def create_app(test_config: dict | None = None) -> Flask:
    """
    App factory.

    The storage core is a library; the app only supplies configuration, a
    request-scoped database session and a thin API over it.
    """
    app = Flask(__name__, instance_relative_config=False)

    repo_root = Path(__file__).resolve().parents[1]

    # Support environment variable for database path
    db_path_env = os.environ.get("APP_DB_PATH")
    if db_path_env:
        db_path = Path(db_path_env)
        # Convert relative paths to absolute based on repo root
        if not db_path.is_absolute():
            db_path = repo_root / db_path
    else:
        # Default path
        db_path = repo_root / "data" / "gedtree.sqlite"

    # Ensure parent directory exists
    db_path.parent.mkdir(parents=True, exist_ok=True)

    app.config.from_mapping(
        DATABASE=str(db_path),
        LOG_DIR=str(repo_root / "logs"),
        LOG_LEVEL=os.environ.get("APP_LOG_LEVEL", "INFO"),
        LOG_MAX_BYTES=10 * 1024 * 1024,
        LOG_BACKUP_COUNT=5,
        MAX_CONTENT_LENGTH=512 * 1024 * 1024,
        JSON_SORT_KEYS=False,
        TESTING=False,
        SQLITE_BUSY_TIMEOUT=5.0,
        GEDCOM_BLOCK_SIZE=65536,
        EXPORT_BATCH_SIZE=1000,
        EXPORT_BUFFER_SIZE=65535,
    )

    if test_config:
        app.config.update(test_config)

    if not app.config["TESTING"]:
        from .logging_config import setup_logging
        setup_logging(app)

    from . import db
    db.init_app(app)

    from .routes import api_bp
    app.register_blueprint(api_bp)

    # Ensure tables exist for tests and first-run scenarios
    with app.app_context():
        from .db import get_engine, ensure_gedcom_chunks_imported, ensure_next_xref_row
        from .models import Base
        engine = get_engine()
        Base.metadata.create_all(engine)
        ensure_gedcom_chunks_imported(engine)
        ensure_next_xref_row(engine)

    return app
