import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from omnichan.exceptions import StorageError

logger = logging.getLogger(__name__)

Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    """Create an engine configured for the database type in the URL"""
    # Handle Heroku's postgres:// URL format (convert to postgresql://)
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    if database_url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            # One shared connection, otherwise every session sees an empty database
            options["poolclass"] = StaticPool
        return create_engine(database_url, **options)
    elif database_url.startswith("mysql"):
        return create_engine(
            database_url,
            pool_pre_ping=True,  # Verify connections before using
            pool_size=10,
            max_overflow=20,
            pool_recycle=3600,  # Recycle connections after 1 hour
        )
    else:
        return create_engine(
            database_url,
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
        )


class Database:
    """Store handle: owns the engine and hands out sessions.

    Constructed once at startup and passed to the services that need it.
    ``open`` must be called before ``session``.
    """

    def __init__(self, url: str):
        self.url = url
        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    def open(self) -> None:
        if self.engine is not None:
            return
        self.engine = build_engine(self.url)
        # Rows are handed back to async callers after the session closes
        self._session_factory = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )
        # Import models so their tables are registered on Base.metadata
        import omnichan.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("Database opened")

    def close(self) -> None:
        if self.engine is None:
            return
        self.engine.dispose()
        self.engine = None
        self._session_factory = None
        logger.info("Database closed")

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session; roll back on error and wrap driver errors in StorageError"""
        if self._session_factory is None:
            raise StorageError("Database is not open")
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(str(e)) from e
        except BaseException:
            db.rollback()
            raise
        finally:
            db.close()

