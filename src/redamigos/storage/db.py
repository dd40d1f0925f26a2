"""Database connection and session management."""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from redamigos.errors import TransientError
from redamigos.logging_config import get_logger
from redamigos.settings import settings
from redamigos.storage.models import Base

logger = get_logger(__name__)


def _timeout_options(database_url: str) -> dict:
    """Bound connect and checkout waits so a hung store fails as TransientError."""
    timeout = settings.store_timeout_seconds
    if database_url.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout}}
    return {"pool_timeout": timeout, "connect_args": {"connect_timeout": timeout}}


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        """Initialize database connection.

        Args:
            database_url: Database URL (defaults to settings)
        """
        self.database_url = database_url or settings.database_url
        self.engine = create_engine(
            self.database_url,
            echo=settings.env == "development",
            pool_pre_ping=True,
            **_timeout_options(self.database_url),
        )
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.info("database_initialized", url=self.engine.url.render_as_string(hide_password=True))

    def create_tables(self) -> None:
        """Create all tables in the database."""
        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created")

    def drop_tables(self) -> None:
        """Drop all tables from the database."""
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("tables_dropped")

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Provide a transactional scope for database operations.

        Connection-level failures surface as TransientError; everything else
        propagates unchanged after the rollback.

        Yields:
            Database session
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except OperationalError as e:
            session.rollback()
            logger.error("store_unreachable", error=str(e.orig))
            raise TransientError() from e
        except DBAPIError as e:
            session.rollback()
            if e.connection_invalidated:
                logger.error("store_connection_lost", error=str(e.orig))
                raise TransientError() from e
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# Global database instance
db = Database()
