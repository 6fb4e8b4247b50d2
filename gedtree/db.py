from contextlib import contextmanager
from typing import Iterator

from flask import g
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import sessionmaker, Session

# Global engine and session factory
_engine = None
_SessionLocal = None

DEFAULT_SQLITE_BUSY_TIMEOUT = 5.0

def init_engine(database_url: str, busy_timeout: float = DEFAULT_SQLITE_BUSY_TIMEOUT) -> None:
    """Initialize the SQLAlchemy engine and session factory."""
    global _engine, _SessionLocal
    _engine = create_engine(
        database_url,
        echo=False,
        # SQLite waits this long for another writer's lock before raising "database is locked"
        connect_args={"check_same_thread": False, "timeout": busy_timeout} if database_url.startswith("sqlite") else {}
    )
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

    # Non-breaking startup migrations / legacy compatibility
    ensure_gedcom_chunks_imported(_engine)

def get_engine():
    """Get the SQLAlchemy engine."""
    return _engine

def get_session_factory() -> sessionmaker:
    return _SessionLocal

def get_session() -> Session:
    """Get a SQLAlchemy session tied to the Flask request context."""
    if "db_session" not in g:
        g.db_session = _SessionLocal()
    return g.db_session

def close_session(e=None) -> None:
    """Close the SQLAlchemy session at the end of the request."""
    session = g.pop("db_session", None)
    if session is not None:
        session.close()

@contextmanager
def transaction(session: Session) -> Iterator[Session]:
    """Commit on success, roll back and re-raise on any failure."""
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise

def init_app(app) -> None:
    """Initialize database with Flask app."""
    from pathlib import Path

    db_path = app.config["DATABASE"]
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    database_url = f"sqlite:///{db_path}"
    init_engine(database_url, busy_timeout=app.config.get("SQLITE_BUSY_TIMEOUT", DEFAULT_SQLITE_BUSY_TIMEOUT))

    # Register teardown
    app.teardown_appcontext(close_session)


def ensure_gedcom_chunks_imported(engine) -> None:
    """Add gedcom_chunks.imported for databases created before chunk processing was resumable (idempotent)."""
    inspector = inspect(engine)
    if "gedcom_chunks" not in inspector.get_table_names():
        return

    columns = {col["name"] for col in inspector.get_columns("gedcom_chunks")}
    with engine.begin() as conn:
        if "imported" not in columns:
            conn.execute(text("ALTER TABLE gedcom_chunks ADD COLUMN imported BOOLEAN NOT NULL DEFAULT 0"))

        conn.execute(text("CREATE INDEX IF NOT EXISTS idx_gedcom_chunks_tree_imported ON gedcom_chunks(tree_id, imported)"))


def ensure_next_xref_row(engine) -> None:
    """Seed the shared xref counter so allocators always have a row to lock (idempotent)."""
    inspector = inspect(engine)
    if "site_settings" not in inspector.get_table_names():
        return
    with engine.begin() as conn:
        exists = conn.execute(
            text("SELECT 1 FROM site_settings WHERE setting_name = 'next_xref'")
        ).first()
        if not exists:
            conn.execute(text("INSERT INTO site_settings (setting_name, setting_value) VALUES ('next_xref', '0')"))
