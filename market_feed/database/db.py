"""Database connection and session management."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from market_feed.database.models import Base
from market_feed.utils.config import DatabaseConfig


def build_engine(database: DatabaseConfig) -> Engine:
    """Create the engine for the configured database URL."""
    return create_engine(
        database.database_url,
        echo=database.echo,
        connect_args={"check_same_thread": False} if "sqlite" in database.database_url else {},
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Initialize database schema."""
    Base.metadata.create_all(bind=engine)
