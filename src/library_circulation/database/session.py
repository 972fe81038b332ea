"""
Database session management for the library circulation service.

This module provides connection management and session handling for
SQLAlchemy. Every circulation operation runs in exactly one session obtained
from ``DatabaseManager.session_scope``:

1. Atomicity: all writes of an operation commit together or not at all
2. Rollback on any exception, including interrupts
3. Short-lived sessions, one per request
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .schema import Base

logger = logging.getLogger(__name__)

# Seconds a SQLite writer waits for a competing writer before giving up
SQLITE_BUSY_TIMEOUT = 15


class DatabaseManager:
    """
    Owns the engine and session factory for one database.

    There is no process-wide instance. The server entry point (or a test)
    builds one and hands it to the circulation engine.
    """

    def __init__(self, database_url: str):
        """
        Initialize the database manager.

        Args:
            database_url: SQLAlchemy database URL
        """
        self.database_url = database_url
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def engine(self) -> Engine:
        """
        Get or create the database engine.

        SQLite gets foreign keys switched on and a busy timeout so that
        concurrent writers queue up instead of failing straight away. An
        in-memory SQLite database has to live on a single shared connection.
        """
        if self._engine is None:
            if self.is_sqlite:
                engine_kwargs = {
                    "connect_args": {
                        "check_same_thread": False,
                        "timeout": SQLITE_BUSY_TIMEOUT,
                    },
                    "echo": False,
                }
                if ":memory:" in self.database_url or self.database_url == "sqlite://":
                    engine_kwargs["poolclass"] = StaticPool

                self._engine = create_engine(self.database_url, **engine_kwargs)

                @event.listens_for(self._engine, "connect")
                def set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ARG001
                    # Take over transaction control from pysqlite so that
                    # BEGIN is emitted by the "begin" hook below.
                    dbapi_connection.isolation_level = None
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA foreign_keys=ON")
                    cursor.close()

                @event.listens_for(self._engine, "begin")
                def begin_immediate(conn):
                    # SQLite has no row locks; the write lock is taken up
                    # front so that a transaction never reads a row another
                    # writer is about to change.
                    conn.exec_driver_sql("BEGIN IMMEDIATE")
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
                # Returned pydantic models are built before commit; keep ORM
                # objects readable afterwards for logging.
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        """
        Create a new database session.

        Prefer ``session_scope``; a bare session must be closed by the caller.
        """
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for database operations.

        ```python
        with db_manager.session_scope() as session:
            book = session.get(Book, book_id)
        # committed here, or rolled back if the block raised
        ```
        """
        session = self.create_session()
        try:
            yield session
            session.commit()
            logger.debug("Database transaction committed successfully")
        except BaseException:
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
        """
        Verify the database connection is working.

        Returns:
            True if connection is successful, False otherwise
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
            return True
        except SQLAlchemyError:
            logger.exception("Database connection failed")
            return False

    def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None
