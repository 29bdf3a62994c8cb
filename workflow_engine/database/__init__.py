"""
Database access: async engine, session factory and schema helpers.
"""

from workflow_engine.database.async_db import (
    create_async_database_engine,
    create_session_factory,
    dispose_engine,
    get_async_db_context,
    get_async_engine,
    get_session_factory,
    session_scope,
)
from workflow_engine.database.setup import create_tables, drop_tables

__all__ = [
    "create_async_database_engine",
    "create_session_factory",
    "dispose_engine",
    "get_async_db_context",
    "get_async_engine",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
]
