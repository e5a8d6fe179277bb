import logging
import os

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

logger = logging.getLogger(__name__)


def database_url() -> str:
    """Resolve the database URL from the environment.

    Falls back to a local SQLite file for development. Read on every call
    so tests and scripts can point the app elsewhere before startup.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        env = os.getenv("ENV", os.getenv("RENDER", "").lower() or "dev")
        # Guard against SQLite fallback in production
        if env in ("prod", "production") or os.getenv("RENDER"):
            raise RuntimeError(
                "DATABASE_URL missing in production; refusing to start with SQLite. "
                "Please configure DATABASE_URL environment variable."
            )
        db_path = os.getenv("DATABASE_PATH", "./yoga_admin.db")
        url = f"sqlite:///{db_path}"

    # Hosting providers hand out postgres:// but SQLAlchemy needs postgresql://
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def is_sqlite(engine: Engine) -> bool:
    return engine.url.get_backend_name() == "sqlite"


def make_engine(url: str | None = None) -> Engine:
    """Create an engine for ``url`` (or the configured database).

    SQLite connections get foreign keys switched on so that deleting a
    course cascades to its schedules. In-memory SQLite shares a single
    connection so every session sees the same database.
    """
    url = url or database_url()
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, echo=False, **kwargs)

    if is_sqlite(engine):
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    # Log database driver for observability
    logger.info(f"DB_URL_DRIVER={engine.url.get_backend_name()}")
    return engine


def create_db_and_tables(engine: Engine):
    """Create database and tables if they don't exist.
    This is safe to call multiple times - it won't wipe existing data.
    """
    import models  # noqa: F401  registers the tables on SQLModel.metadata

    SQLModel.metadata.create_all(engine)
