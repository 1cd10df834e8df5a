"""
Database session handling for finsync.

Provides the context manager every store operation runs inside.
"""

from collections.abc import Callable, Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from .config import DatabaseConfig


@contextmanager
def get_session(
    session_factory: Callable[[], Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Context manager that yields a database session and ensures proper cleanup.

    Commits on success, rolls back on any exception, always closes.
    Uses the configured DATABASE_URL factory when none is given.

    Usage:
        with get_session() as session:
            session.add(period)
    """
    factory = session_factory or DatabaseConfig.get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
