"""
Database session management for the Library Circulation service.

Every consistency rule runs inside the transaction of the write that
triggered it, so the session is the transaction boundary of the rule engine:

1. Sessions are short-lived, one per write operation or request
2. Repositories commit on success and roll back on any rejection
3. SQLite connections enable foreign keys so cascades match the schema
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_config
from .schema import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DatabaseManager:
    """
    Owns the engine and hands out the sessions repositories write through.

    A repository write, its rule side effects (fines, audit rows, copy
    counters) and its commit or rollback all happen on one session from
    here. SQLite connections get foreign keys switched on so the
    ``ON DELETE CASCADE`` keys behind book and member deletion apply.
    """

    def __init__(self, database_url: str | None = None):
        """
        Args:
            database_url: SQLAlchemy database URL. Defaults to the SQLite file at
                ``LibraryConfig.database_path``, creating its directory.
        """
        if database_url is None:
            # Config has already made the path absolute and created its directory
            config = get_config()
            database_url = config.get_database_url()
            logger.info("Using SQLite database at: %s", config.database_path)

        self.database_url = database_url
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def engine(self) -> Engine:
        """Engine, created on first use. In-memory SQLite shares one connection."""
        if self._engine is None:
            if self.database_url.startswith("sqlite"):
                self._engine = create_engine(
                    self.database_url,
                    # Single shared connection; in-memory databases live as long as it does
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
        """Session factory. Rows stay readable after commit so repositories can
        return them as models without reloading."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        """Open a session for one unit of work. Callers must close it."""
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Run a unit of work that commits on success and rolls back on any error.

        Repository writes commit themselves; the scope covers report reads
        and sessions that batch several repository calls.

        ```python
        with db_manager.session_scope() as session:
            CirculationRepository(session).return_loan(loan_id)
        ```

        Yields:
            Database session

        Raises:
            Any database errors are logged and re-raised
        """
        session = self.create_session()
        try:
            yield session
            session.commit()
            logger.debug("Database transaction committed successfully")
        except Exception:
            logger.exception("Database error, rolling back")
            session.rollback()
            raise
        finally:
            session.close()

    def init_database(self, drop_existing: bool = False) -> None:
        """
        Create the nine circulation tables with their CHECK constraints.

        Args:
            drop_existing: If True, drop all tables first (loses all data)
        """
        engine = self.engine

        if drop_existing:
            logger.warning("Dropping all existing tables...")
            Base.metadata.drop_all(bind=engine)

        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialization complete")

    def verify_connection(self) -> bool:
        """Run ``SELECT 1`` to confirm the store is reachable before serving."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
            return True
        except Exception:
            logger.exception("Database connection failed")
            return False

    def close(self) -> None:
        """Dispose of the engine; the next access creates a fresh one."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None


_db_manager: DatabaseManager | None = None


def get_db_manager(database_url: str | None = None) -> DatabaseManager:
    """
    Process-wide manager used by the tool handlers and report resources.

    Args:
        database_url: Database URL (only used on first call)
    """
    global _db_manager  # noqa: PLW0603 - Singleton pattern for database manager

    if _db_manager is None:
        _db_manager = DatabaseManager(database_url)

    return _db_manager


def reset_db_manager() -> None:
    """Dispose of the global database manager (useful for testing)."""
    global _db_manager  # noqa: PLW0603

    if _db_manager is not None:
        _db_manager.close()
    _db_manager = None


def get_session() -> Session:
    """
    Session for a tool handler. Each repository write on it commits or
    rolls back on its own, so the handler only has to close it.
    """
    return get_db_manager().create_session()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """``session_scope`` on the process-wide manager; used for report reads."""
    with get_db_manager().session_scope() as session:
        yield session


def safe_commit(session: Session, operation: str) -> None:
    """
    Commit a repository write together with its rule side effects.

    On failure the whole write is rolled back, so no partial state from a
    rejected write survives.

    Args:
        session: The database session
        operation: Description of the operation (for error messages)

    Raises:
        IntegrityError: If a database constraint rejects the write
        ValueError: If the commit fails for any other reason
    """
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        raise ValueError(f"Database operation '{operation}' failed: {e!s}") from e


def safe_query(session: Session, query_func: Callable[[Session], T], error_msg: str) -> T:
    """
    Run a repository read, turning storage failures into a readable error.

    Args:
        session: The database session
        query_func: Function that performs the query
        error_msg: Error message prefix

    Returns:
        Query result

    Raises:
        ValueError: If query fails
    """
    try:
        return query_func(session)
    except Exception as e:
        logger.exception("Query failed")
        raise ValueError(f"{error_msg}: Database query failed") from e
