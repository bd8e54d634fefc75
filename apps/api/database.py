from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy.pool import StaticPool
import logging

from config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def build_engine(database_url: str, echo: bool = False):
    if database_url in IN_MEMORY_URLS:
        # One shared connection so every thread sees the same in-memory database
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        # SQLite database for development
        return create_engine(database_url, echo=echo, connect_args={"check_same_thread": False})
    # Production configuration with connection pooling
    return create_engine(
        database_url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,  # Handle stale connections
        pool_recycle=300,  # Recycle connections every 5 minutes
    )


engine = build_engine(settings.database_url, echo=settings.db_echo)


def get_session():
    with Session(engine) as session:
        yield session


def open_session() -> Session:
    """Session for work outside a request (WebSocket handlers, background sweeps)"""
    return Session(engine)


def create_db_and_tables():
    SQLModel.metadata.create_all(engine)
    logger.info("Database tables ensured")


def drop_db_and_tables():
    SQLModel.metadata.drop_all(engine)
