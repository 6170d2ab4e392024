"""
Database Package Initialization.

============================================================
DATABASE PERSISTENCE LAYER
============================================================

Engine, session and transaction management for the exposure
compliance engine. Every failure raises; nothing is retried
here. Retry policy belongs to the caller or background job.

============================================================
"""

from .engine import (
    # Engine creation
    build_engine,
    create_database_engine,
    get_engine,
    dispose_engine,

    # Session management
    get_session,
    get_session_factory,
    transaction_scope,

    # Database initialization
    initialize_database,
    verify_database_connection,
    create_all_tables,
    verify_required_tables,
    get_database_url,
    DEFAULT_DATABASE_URL,
    REQUIRED_TABLES,

    # Exceptions
    DatabasePersistenceError,
    DatabaseConnectionError,
    DatabaseInitializationError,
)

__all__ = [
    "build_engine",
    "create_database_engine",
    "get_engine",
    "dispose_engine",
    "get_session",
    "get_session_factory",
    "transaction_scope",
    "initialize_database",
    "verify_database_connection",
    "create_all_tables",
    "verify_required_tables",
    "get_database_url",
    "DEFAULT_DATABASE_URL",
    "REQUIRED_TABLES",
    "DatabasePersistenceError",
    "DatabaseConnectionError",
    "DatabaseInitializationError",
]
