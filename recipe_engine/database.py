"""
Database connection and session management.

Provides:
- create_session_factory(): Engine + sessionmaker for a database URL
- session_scope(): Context manager for DB sessions
- init_db(): Create tables

Nothing here is global: the API keeps its factory on app.state and each
worker task builds (or reuses) its own.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import normalize_database_url
from .models import Base


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    database_url = normalize_database_url(database_url)

    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            # Share the single in-memory database across sessions
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    # pool_pre_ping=True ensures connections are valid before using them
    return create_engine(database_url, pool_pre_ping=True, echo=echo)


def create_session_factory(database_url: str, echo: bool = False) -> sessionmaker:
    engine = create_db_engine(database_url, echo=echo)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables that don't exist yet"""
    Base.metadata.create_all(engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with session_scope(factory) as db:
            recipe = db.get(Recipe, "recipe_123")

    The session is closed when exiting the context, and rolled back if an
    exception occurs.
    """
    db = session_factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
