"""
Provides transactional session scopes for linkage requests.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.orm import Session, sessionmaker

from . import engine as db_engine

logger = logging.getLogger(__name__)


@contextmanager
def session_scope(session_factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """One request, one transaction: commit on success, roll back on error."""
    if session_factory is None:
        if db_engine.SessionLocal is None:
            db_engine.init_db()
        session_factory = db_engine.SessionLocal

    session = session_factory()
    try:
        logger.debug("DB session opened")
        yield session
        session.commit()
        logger.debug("DB session committed")
    except Exception:
        session.rollback()
        logger.exception("DB session rolled back due to error")
        raise
    finally:
        session.close()
        logger.debug("DB session closed")
