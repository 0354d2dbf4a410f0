"""Database connection and session management."""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from referrals.logging_config import get_logger
from referrals.settings import settings
from referrals.storage.models import Base

logger = get_logger(__name__)


def _lock_on_begin(engine: Engine) -> None:
    """Make every SQLite transaction take the database write lock up front.

    SQLite ignores ``SELECT ... FOR UPDATE`` and pysqlite defers BEGIN until
    the first write, so two transactions could both read a counter before
    either writes it. ``BEGIN IMMEDIATE`` serialises them at the first read.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        """Initialize database connection.

        Args:
            database_url: Database URL (defaults to settings)
        """
        self.database_url = database_url or settings.database_url
        connect_args = {}
        if self.is_sqlite:
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = settings.sqlite_busy_timeout_seconds

        self.engine = create_engine(
            self.database_url,
            echo=False,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
        if self.is_sqlite:
            _lock_on_begin(self.engine)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.info("database_initialized", url=self.engine.url.render_as_string(hide_password=True))

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def create_tables(self) -> None:
        """Create all tables in the database."""
        # Register every mapped class on the shared metadata
        import referrals.blocks.models  # noqa: F401
        import referrals.links.models  # noqa: F401
        import referrals.lookups.models  # noqa: F401
        import referrals.programs.models  # noqa: F401
        import referrals.users.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created")

    def drop_tables(self) -> None:
        """Drop all tables from the database."""
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("tables_dropped")

    @contextmanager
    def session(self, existing: Session | None = None) -> Generator[Session, None, None]:
        """Provide a transactional scope for database operations.

        When ``existing`` is given the caller owns the transaction: the same
        session is yielded and commit/rollback is left to the caller. This is
        how cascades and counter updates join one outer transaction.

        Yields:
            Database session
        """
        if existing is not None:
            yield existing
            return

        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()


# Global database instance
db = Database()
