"""
Engine and session configuration
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from vip.database.models import Base
from vip.utils.config import get_config

logger = logging.getLogger(__name__)


def create_db_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Create an engine for the configured database

    In-memory SQLite shares one connection so every session sees the same data.
    """
    config = get_config()
    url = url or config.get('database.url', 'sqlite:///vip.db')
    echo = bool(config.get('database.echo', False)) if echo is None else echo

    if url.startswith('sqlite') and (':memory:' in url or url in ('sqlite://', 'sqlite:///')):
        return create_engine(url, echo=echo, connect_args={'check_same_thread': False},
                             poolclass=StaticPool)
    return create_engine(url, echo=echo, pool_pre_ping=True)


def create_session_factory(url: Optional[str] = None, echo: Optional[bool] = None,
                           engine: Optional[Engine] = None) -> sessionmaker:
    """Session factory bound to a new or given engine"""
    engine = engine or create_db_engine(url, echo)
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """
    Transactional scope around a series of operations

    Commits on success, rolls back on any exception, always closes.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        logger.exception("Rolling back database session")
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine) -> dict:
    """
    Create all tables that do not exist yet

    Returns:
        dict: table name -> existed before the call
    """
    existing = set(inspect(engine).get_table_names())
    Base.metadata.create_all(engine)
    status = {name: name in existing for name in Base.metadata.tables}
    created = [name for name, existed in status.items() if not existed]
    if created:
        logger.info(f"Created tables: {', '.join(created)}")
    else:
        logger.info("All tables already exist")
    return status
