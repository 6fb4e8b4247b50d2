"""
Logging for the storage core.

Core modules log through `log_info` with a context dict (tree id, xref,
change id, counts). ContextFormatter renders that context after the message
so a log line says which tree and record it is about.
"""
import logging
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Any, Dict

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Attributes of every LogRecord; context keys with these names are prefixed.
LOG_RESERVED_KEYS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}
CONTEXT_ATTR = "gedtree_context"


def log_info(logger: logging.Logger, message: str, context: Dict[str, Any] | None = None) -> None:
    """Log message at INFO with its context both as record attributes and for ContextFormatter."""
    context = dict(context or {})
    extra: Dict[str, Any] = {f"ctx_{k}" if k in LOG_RESERVED_KEYS else k: v for k, v in context.items()}
    extra[CONTEXT_ATTR] = context
    logger.info(message, extra=extra)


class ContextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        context = getattr(record, CONTEXT_ATTR, None)
        if not context:
            return text
        return text + " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"


def setup_logging(app) -> logging.Logger:
    """
    Send the app's and the core modules' logs to a rotating file under LOG_DIR
    and to the console. LOG_LEVEL, LOG_MAX_BYTES and LOG_BACKUP_COUNT tune it.
    """
    log_dir = Path(app.config["LOG_DIR"])
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "gedtree.log"
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    formatter = ContextFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=app.config.get("LOG_MAX_BYTES", 10 * 1024 * 1024),
        backupCount=app.config.get("LOG_BACKUP_COUNT", 5),
        encoding="utf-8",
    )
    console_handler = logging.StreamHandler()
    for handler in (file_handler, console_handler):
        handler.setLevel(level)
        handler.setFormatter(formatter)

    # app.logger is the "gedtree" logger, so the core modules' loggers propagate to it
    app.logger.setLevel(level)
    app.logger.addHandler(file_handler)
    app.logger.addHandler(console_handler)

    # HTTP access lines go to the file only
    logging.getLogger("werkzeug").addHandler(file_handler)

    app.logger.info("Logging to %s at %s", log_file, logging.getLevelName(level))
    return app.logger
