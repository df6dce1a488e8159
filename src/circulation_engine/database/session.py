"""
Database session management for the Circulation Engine.

Sessions are short-lived: a tool handler or the reconciliation job opens one
per call, the repositories commit at the end of each operation, and the
session is closed afterwards. Failures are rolled back so that a state
transition is either fully recorded or not at all.
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from ..config import get_config
from .errors import ConcurrencyConflictError, RepositoryException
from .schema import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DatabaseManager:
    """
    Manages the engine and session factory for the ledger.

    A single manager is shared process-wide through get_db_manager().
    """

    def __init__(self, database_url: str | None = None):
        """
        Initialize the database manager.

        Args:
            database_url: SQLAlchemy database URL. If None, uses the configured ledger.
        """
        if database_url is None:
            config = get_config()
            if config.database_url:
                database_url = config.database_url
            else:
                db_path = config.database_path
                if not db_path.is_absolute():
                    db_path = Path.cwd() / db_path
                db_path.parent.mkdir(exist_ok=True, parents=True)
                database_url = f"sqlite:///{db_path}"
                logger.info("Using SQLite database at: %s", db_path)

        self.database_url = database_url
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def engine(self) -> Engine:
        """
        Get or create the database engine.

        SQLite gets a single shared connection and foreign keys switched on;
        other databases get a pre-pinged connection pool.
        """
        if self._engine is None:
            if self.database_url.startswith("sqlite"):
                self._engine = create_engine(
                    self.database_url,
                    # A single connection avoids "database is locked" errors
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                    echo=False,
                )

                @event.listens_for(self._engine, "connect")
                def set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ARG001
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA foreign_keys=ON")
                    cursor.close()
            else:
                self._engine = create_engine(
                    self.database_url,
                    pool_size=10,
                    max_overflow=20,
                    pool_pre_ping=True,
                    echo=False,
                )

            logger.info("Database engine created: %s", self._engine.url)

        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for database operations.

        ```python
        with db_manager.session_scope() as session:
            CirculationRepository(session).process_return(record_id)
        ```

        Anything left uncommitted by the caller is committed on exit; any
        exception rolls the session back and is re-raised.
        """
        session = self.create_session()
        try:
            yield session
            session.commit()
            logger.debug("Database transaction committed successfully")
        except RepositoryException:
            # Business rule failures are expected; roll back quietly.
            session.rollback()
            raise
        except Exception:
            logger.exception("Database error, rolling back")
            session.rollback()
            raise
        finally:
            session.close()

    def init_database(self, drop_existing: bool = False) -> None:
        """
        Initialize the database schema.

        Args:
            drop_existing: If True, drop all tables before creating
        """
        engine = self.engine

        if drop_existing:
            logger.warning("Dropping all existing tables...")
            Base.metadata.drop_all(bind=engine)

        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialization complete")

    def verify_connection(self) -> bool:
        """Check the ledger is reachable (used as a health check)."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
            return True
        except SQLAlchemyError:
            logger.exception("Database connection failed")
            return False

    def close(self) -> None:
        """Dispose of the engine and forget the session factory."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None


_db_manager: DatabaseManager | None = None


def get_db_manager(database_url: str | None = None) -> DatabaseManager:
    """
    Get the global database manager instance.

    Args:
        database_url: Database URL (only used on first call)
    """
    global _db_manager  # noqa: PLW0603 - Singleton pattern for database manager

    if _db_manager is None:
        _db_manager = DatabaseManager(database_url)

    return _db_manager


def set_db_manager(manager: DatabaseManager | None) -> None:
    """Replace the global manager (tests point it at a scratch database)."""
    global _db_manager  # noqa: PLW0603

    if _db_manager is not None and _db_manager is not manager:
        _db_manager.close()
    _db_manager = manager


def get_session() -> Session:
    """
    Get a new database session.

    Prefer session_scope() for proper transaction management.
    """
    return get_db_manager().create_session()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Convenience context manager over the global manager's session_scope()."""
    with get_db_manager().session_scope() as session:
        yield session


def safe_commit(session: Session, operation: str) -> None:
    """
    Commit a session, translating storage failures.

    Args:
        session: The database session
        operation: Description of the operation (for error messages)

    Raises:
        ConcurrencyConflictError: If a versioned row changed underneath us
        RepositoryException: If the commit fails for any other storage reason
    """
    try:
        session.commit()
    except StaleDataError as e:
        session.rollback()
        raise ConcurrencyConflictError(
            f"Database operation '{operation}' lost a concurrent update: {e!s}"
        ) from e
    except SQLAlchemyError as e:
        session.rollback()
        raise RepositoryException(f"Database operation '{operation}' failed: {e!s}") from e


def safe_flush(session: Session, operation: str) -> None:
    """Flush pending changes so later queries in the same transaction see them."""
    try:
        session.flush()
    except StaleDataError as e:
        session.rollback()
        raise ConcurrencyConflictError(
            f"Database operation '{operation}' lost a concurrent update: {e!s}"
        ) from e
    except SQLAlchemyError as e:
        session.rollback()
        raise RepositoryException(f"Database operation '{operation}' failed: {e!s}") from e


def safe_query(session: Session, query_func: Callable[[Session], T], error_msg: str) -> T:
    """
    Execute a query, translating storage failures.

    Args:
        session: The database session
        query_func: Function that performs the query
        error_msg: Prefix for the error message

    Raises:
        RepositoryException: If the query fails
    """
    try:
        return query_func(session)
    except SQLAlchemyError as e:
        logger.exception("Query failed")
        raise RepositoryException(f"{error_msg}: Database query failed") from e
