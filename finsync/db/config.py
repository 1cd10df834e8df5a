"""
Database configuration for finsync.

Loads environment variables and creates the SQLAlchemy engine and session
factory on first use.
"""

from dotenv import load_dotenv
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import sessionmaker

from finsync.config.loader import get_database_url

# Load environment variables from .env file
load_dotenv()


class DatabaseConfig:
    """Database configuration singleton."""

    _engine: Engine | None = None
    _session_factory: sessionmaker | None = None

    @classmethod
    def get_engine(cls) -> Engine:
        """Get SQLAlchemy engine (singleton)."""
        if cls._engine is None:
            cls._engine = create_engine(
                get_database_url(),
                pool_size=10,
                max_overflow=20,
                pool_pre_ping=True,
                echo=False,  # Set to True for SQL debugging
            )
        return cls._engine

    @classmethod
    def get_session_factory(cls) -> sessionmaker:
        """Get session factory."""
        if cls._session_factory is None:
            cls._session_factory = make_session_factory(cls.get_engine())
        return cls._session_factory


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory with the settings every finsync session uses."""
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )
