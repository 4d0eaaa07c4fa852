"""
Database Configuration and Session Management
============================================

Engine construction, the session factory and table creation for the
fulfillment service.
"""

import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from config import Config
from models import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str = None) -> Engine:
    """Create an engine; SQLite gets thread-safe connect args, PostgreSQL a bounded pool"""
    url = database_url or Config.DATABASE_URL
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, echo=False)

    return create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,    # Validate connections before use
        pool_recycle=3600,
        pool_timeout=30,
        echo=False,
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    # Objects stay readable after commit; handlers hand them to notifications
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine()
SessionLocal = build_session_factory(engine)


@contextmanager
def managed_session(session_factory: sessionmaker = None):
    """
    Session scope: commits on success, rolls back on any exception, always closes.

    Usage:
        with managed_session(factory) as session:
            session.add(obj)
    """
    session: Session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_tables(bind: Engine = None) -> None:
    """Create all tables that do not exist yet"""
    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info(f"✅ DATABASE_TABLES_READY: {target.url.render_as_string(hide_password=True)}")
