"""Database setup and session management."""
import logging
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from smart_email.config import settings

logger = logging.getLogger(__name__)


def create_db_engine(url: str) -> Engine:
    """Create an engine, selecting the psycopg 3 driver for PostgreSQL URLs."""
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, connect_args=connect_args)


engine = create_db_engine(settings.database_url)


def init_db(db_engine: Engine | None = None):
    """Initialize the database tables."""
    # Registers the table classes on SQLModel.metadata
    from smart_email.models import session  # noqa: F401

    SQLModel.metadata.create_all(db_engine or engine)
    logger.info("Database tables created")
