"""
Database package for Vulnerability Intelligence Pipeline
"""
from vip.database.models import Base
from vip.database.session import create_db_engine, create_session_factory, session_scope, init_db
from vip.database.store import SqlVulnerabilityStore

__all__ = [
    'Base',
    'create_db_engine',
    'create_session_factory',
    'session_scope',
    'init_db',
    'SqlVulnerabilityStore',
]
