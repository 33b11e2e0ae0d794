"""Database connection management for nptma.

This module supports both:
- Local SQLite (dev/tests), e.g. `DB_ENDPOINT=sqlite://` + `DB_NAME=./nptma.db`
- PostgreSQL in production, e.g. `DB_ENDPOINT=postgresql+psycopg://host:5432`

The engine is created lazily on first use and shared for the lifetime of the
process. Initialization is guarded so concurrent first requests converge on
a single connection pool.
"""

import logging
import os
import threading
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, URL, make_url

from nptma.config import CREDENTIALS_MODE_ENV, Settings
from nptma.database.models import metadata, users_table

logger = logging.getLogger(__name__)


def _is_sqlite_url(database_url) -> bool:
    return "sqlite" in str(database_url or "")


def build_database_url(settings: Settings) -> URL:
    """Combine endpoint, database name and credentials into one SQLAlchemy URL."""
    url = make_url(settings.db_endpoint).set(database=settings.db_name)
    if settings.db_credentials_mode == CREDENTIALS_MODE_ENV:
        url = url.set(username=settings.db_user, password=settings.db_password)
    return url


def get_engine_kwargs(database_url) -> dict:
    """Return deterministic create_engine kwargs for a DB URL.

    This is separated to allow deterministic unit testing without connecting.
    """
    engine_kwargs: dict = {
        "echo": os.getenv("DEBUG", "False").lower() == "true",
        # Drops connections the server closed while the process sat idle.
        "pool_pre_ping": True,
    }

    if _is_sqlite_url(database_url):
        # SQLite-specific setting required for FastAPI concurrency in a single process.
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        return engine_kwargs

    # Keep pooling conservative; every worker process holds its own pool.
    engine_kwargs["pool_size"] = int(os.getenv("DB_POOL_SIZE", "5"))
    engine_kwargs["max_overflow"] = int(os.getenv("DB_MAX_OVERFLOW", "5"))
    engine_kwargs["pool_timeout"] = int(os.getenv("DB_POOL_TIMEOUT_SEC", "30"))
    return engine_kwargs


def build_engine(database_url) -> Engine:
    engine = create_engine(database_url, **get_engine_kwargs(database_url))
    if _is_sqlite_url(database_url):
        event.listen(engine, "connect", set_sqlite_pragmas)
    return engine


def set_sqlite_pragmas(dbapi_conn, connection_record):
    """Enable WAL so readers are not blocked by the per-request upserts."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


class Database:
    """Lazily-initialized engine plus the configured users table."""

    def __init__(self, settings: Settings, engine: Optional[Engine] = None):
        self.settings = settings
        self.table = users_table(settings.db_table)
        self._engine = engine
        self._lock = threading.Lock()

    @property
    def engine(self) -> Engine:
        """Return the shared engine, creating it on first access."""
        if self._engine is None:
            with self._lock:
                if self._engine is None:
                    url = build_database_url(self.settings)
                    logger.info(f"Creating database engine for {url.render_as_string(hide_password=True)}")
                    self._engine = build_engine(url)
        return self._engine

    def init_db(self) -> None:
        """Initialize database schema.

        - SQLite / default: create the users table directly if missing.
        - PostgreSQL with `RUN_MIGRATIONS=true`: run Alembic migrations to head.
        """
        run_migrations = os.getenv("RUN_MIGRATIONS", "False").lower() == "true"
        if run_migrations and not _is_sqlite_url(self.engine.url):
            from alembic import command
            from alembic.config import Config

            alembic_cfg = Config(os.getenv("ALEMBIC_INI", "alembic.ini"))
            # Ensure Alembic uses the same runtime DB URL.
            alembic_cfg.set_main_option(
                "sqlalchemy.url",
                self.engine.url.render_as_string(hide_password=False).replace("%", "%%"),
            )
            command.upgrade(alembic_cfg, "head")
            return

        metadata.create_all(bind=self.engine, tables=[self.table])

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
