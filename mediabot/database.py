"""SQLite database setup and session management."""

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from .config import get_database_path


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


# Singleton engine and session maker to ensure consistent database access
_engine = None
_session_maker = None


def get_engine():
    """Get or create the singleton database engine."""
    global _engine
    if _engine is None:
        db_path = get_database_path()
        _engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"check_same_thread": False},
            echo=False
        )
    return _engine


def get_session_maker():
    """Get or create the singleton session maker."""
    global _session_maker
    if _session_maker is None:
        engine = get_engine()
        _session_maker = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return _session_maker


def reset_engine():
    """Drop the cached engine so the next call picks up a new database path."""
    global _engine, _session_maker
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_maker = None


def init_database():
    """Initialize the database, creating all tables."""
    from . import models  # noqa: F401  (register tables)

    engine = get_engine()
    Base.metadata.create_all(bind=engine)


def get_db():
    """Dependency to get a database session."""
    SessionLocal = get_session_maker()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
