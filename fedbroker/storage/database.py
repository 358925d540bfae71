"""Database integration for the broker's local users and sessions."""

from __future__ import annotations

import os
from pathlib import Path

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Default database location
DEFAULT_DB_DIR = Path.home() / ".fedbroker"
DEFAULT_DB_PATH = DEFAULT_DB_DIR / "fedbroker.db"
DEFAULT_DB_URL = f"sqlite:///{DEFAULT_DB_PATH}"

# Environment variable names
ENV_DB_URL = "FEDBROKER_DATABASE_URL"


class DatabaseError(Exception):
    """Base exception for database errors."""


def get_database_url() -> str:
    """Get database URL from environment or default."""
    return os.environ.get(ENV_DB_URL) or DEFAULT_DB_URL


def _expand_sqlite_url(url: str) -> str:
    """Expand ``~`` in file-based SQLite URLs and create the parent directory."""
    try:
        parsed = make_url(url)
    except ArgumentError as e:
        raise DatabaseError(f"Invalid database URL: {e}") from e

    if parsed.get_backend_name() != "sqlite" or not parsed.database or parsed.database == ":memory:":
        return url

    db_path = Path(parsed.database).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return parsed.set(database=str(db_path)).render_as_string(hide_password=False)


def create_database_engine(url: str | None = None, echo: bool = False) -> Engine:
    """Create SQLAlchemy engine.

    Args:
        url: Database URL. Defaults to the configured URL.
        echo: Whether to echo SQL statements (for debugging).

    Returns:
        Configured SQLAlchemy Engine.
    """
    url = _expand_sqlite_url(url or get_database_url())

    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, so every session sees the same in-memory schema
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return create_engine(url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a session factory for the given engine.

    Args:
        engine: SQLAlchemy engine.

    Returns:
        Session factory.
    """
    return sessionmaker(bind=engine, expire_on_commit=False)


class Database:
    """Database manager for the broker.

    Provides a high-level interface for database operations.
    """

    def __init__(self, url: str | None = None, echo: bool = False) -> None:
        """Initialize database manager.

        Args:
            url: SQLAlchemy database URL.
            echo: Whether to echo SQL statements.
        """
        self._url = url or get_database_url()
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None
        self._echo = echo

    @property
    def url(self) -> str:
        return self._url

    @property
    def engine(self) -> Engine:
        """Get or create the database engine."""
        if self._engine is None:
            self._engine = create_database_engine(self._url, self._echo)
        return self._engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = create_session_factory(self.engine)
        return self._session_factory

    def get_session(self) -> Session:
        """Create a new database session.

        Returns:
            A new SQLAlchemy Session.
        """
        return self.session_factory()

    def init_db(self) -> None:
        """Initialize database schema.

        Creates all tables defined in the models.
        """
        from fedbroker.storage.models import Base

        Base.metadata.create_all(self.engine)

    def verify_connection(self) -> bool:
        """Verify the database connection.

        Returns:
            True if connection is successful.

        Raises:
            DatabaseError: If the connection fails.
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text("SELECT 1"))
                result.fetchone()
            return True
        except SQLAlchemyError as e:
            raise DatabaseError(f"Database connection failed: {e}") from e

    def close(self) -> None:
        """Close database connections."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
