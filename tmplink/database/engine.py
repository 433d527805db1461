"""
Database engine configuration for synchronous access.
"""
import logging
import os
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tmplink.config import settings

engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None
logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


def create_database_engine(db_url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite gets foreign key enforcement."""
    kwargs = {"echo": echo, "future": True}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        database = make_url(db_url).database
        if database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            os.makedirs(os.path.dirname(os.path.abspath(database)), exist_ok=True)
    else:
        kwargs["pool_pre_ping"] = True

    new_engine = create_engine(db_url, **kwargs)
    if new_engine.dialect.name == "sqlite":
        event.listen(new_engine, "connect", _enable_sqlite_foreign_keys)
    return new_engine


def init_db(db_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Initializes the database engine and session factory."""
    global engine, SessionLocal
    db_url = db_url or settings.DB_URL
    logger.info("Initializing database at %s", db_url)

    engine = create_database_engine(db_url, echo=settings.DB_ECHO if echo is None else echo)
    SessionLocal = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    logger.info("Database engine initialized")
    return engine


def get_engine() -> Engine:
    if engine is None:
        init_db()
    return engine


def ensure_schema(target: Optional[Engine] = None) -> None:
    """Create database tables if they do not exist yet.

    This is safe to run repeatedly.
    """
    from .models import Base

    Base.metadata.create_all(target or get_engine())
    logger.info("Database schema ensured (create_all executed)")
