"""
Database Persistence Layer - Core Engine.

============================================================
RESPONSIBILITY
============================================================
Creates the SQLAlchemy engine and session factory used by the
exposure compliance engine's repositories.

- PostgreSQL in production, SQLite for local use and tests
- Explicit transaction boundaries (transaction_scope)
- Foreign keys enforced on SQLite so cascades match PostgreSQL
- Hard failures on persistence errors, no retries

============================================================
CONFIGURATION
============================================================
EXPOSURE_DATABASE_URL  preferred connection URL
DATABASE_URL           fallback connection URL
Both may be provided through a .env file.

============================================================
"""

import os
import logging
from typing import Generator, List, Optional
from contextlib import contextmanager

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from sqlalchemy.orm import sessionmaker, Session

from dotenv import load_dotenv

from storage.models.base import Base

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///exposure_engine.db"

REQUIRED_TABLES = [
    "air_monitoring_jobs",
    "personnel",
    "air_samples",
    "exposure_limits",
    "exposure_records",
    "exposure_classification_changes",
]

# =============================================================
# DATABASE ENGINE
# =============================================================

_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None


def get_database_url() -> str:
    """Get database URL from environment."""
    url = os.getenv("EXPOSURE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if url and url.startswith("postgresql+asyncpg"):
        # The engine is synchronous
        url = url.replace("postgresql+asyncpg", "postgresql")

    if not url:
        url = DEFAULT_DATABASE_URL
        logger.warning(f"EXPOSURE_DATABASE_URL not set, using default: {url}")

    return url


def build_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> Engine:
    """
    Build a new SQLAlchemy engine for a URL.

    Pool sizing only applies to server databases; SQLite uses the
    default pool chosen by SQLAlchemy.

    Args:
        database_url: SQLAlchemy connection URL
        pool_size: Number of connections to keep in pool
        max_overflow: Max connections beyond pool_size
        pool_timeout: Seconds to wait for available connection
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements

    Returns:
        SQLAlchemy Engine
    """
    is_sqlite = database_url.startswith("sqlite")

    if is_sqlite:
        engine = create_engine(database_url, echo=echo)
    else:
        engine = create_engine(
            database_url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            echo=echo,
        )

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        if is_sqlite:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
        logger.debug("Database connection established")

    return engine


def create_database_engine(echo: bool = False) -> Engine:
    """
    Create the process-wide engine from the configured URL.

    Subsequent calls return the same engine.
    """
    global _engine

    if _engine is not None:
        return _engine

    database_url = get_database_url()
    logger.info(f"Creating database engine for: {database_url.split('@')[-1]}")
    _engine = build_engine(database_url, echo=echo)
    return _engine


def get_engine() -> Engine:
    """Get the database engine, creating if necessary."""
    if _engine is None:
        return create_database_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    """Get session factory, creating if necessary."""
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    return _SessionFactory


def dispose_engine() -> None:
    """Dispose the process-wide engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


# =============================================================
# SESSION MANAGEMENT
# =============================================================


def get_session() -> Session:
    """
    Get a new database session.

    IMPORTANT: Caller is responsible for committing/closing.
    Prefer transaction_scope() instead.
    """
    return get_session_factory()()


@contextmanager
def transaction_scope() -> Generator[Session, None, None]:
    """
    Context manager for explicit transaction boundaries.

    Commits only if no exception occurs.
    Rolls back on ANY exception.

    Usage:
        with transaction_scope() as session:
            engine = ExposureComplianceEngine(session)
            engine.ingest_job(org_id, job_id, user_id, "osha")
    """
    session = get_session()
    try:
        yield session
        session.commit()
        logger.debug("Database transaction committed successfully")
    except SQLAlchemyError as e:
        logger.error(f"Database transaction failed, rolling back: {e}")
        session.rollback()
        raise DatabasePersistenceError(f"Transaction failed: {e}") from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# =============================================================
# DATABASE INITIALIZATION
# =============================================================


def verify_database_connection(engine: Optional[Engine] = None) -> bool:
    """
    Verify database connection is working.

    Raises:
        DatabaseConnectionError: If connection fails
    """
    engine = engine or get_engine()

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
            logger.info("Database connection verified successfully")
            return True
    except OperationalError as e:
        logger.error(f"Database connection failed: {e}")
        raise DatabaseConnectionError(f"Cannot connect to database: {e}") from e


def create_all_tables(engine: Optional[Engine] = None) -> None:
    """
    Create all tables of the exposure engine.

    Raises:
        DatabaseInitializationError: If table creation fails
    """
    engine = engine or get_engine()

    # Register models with Base.metadata
    from exposure_engine import models  # noqa: F401

    try:
        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database tables: {e}")
        raise DatabaseInitializationError(f"Table creation failed: {e}") from e


def verify_required_tables(engine: Optional[Engine] = None) -> List[str]:
    """
    Check that every table of the exposure engine exists.

    Returns:
        Names of missing tables (empty when all exist)
    """
    engine = engine or get_engine()
    existing = set(inspect(engine).get_table_names())

    missing = []
    for table in REQUIRED_TABLES:
        if table in existing:
            logger.debug(f"  [OK] Table verified: {table}")
        else:
            logger.warning(f"  [!!] Table missing: {table}")
            missing.append(table)
    return missing


def initialize_database(engine: Optional[Engine] = None) -> None:
    """
    Full database initialization sequence.

    1. Verify connection
    2. Create tables if not exist
    3. Verify tables exist
    4. Abort on any failure

    Raises:
        DatabaseConnectionError: If the database cannot be reached
        DatabaseInitializationError: If tables are missing afterwards
    """
    engine = engine or get_engine()
    verify_database_connection(engine)
    create_all_tables(engine)

    missing = verify_required_tables(engine)
    if missing:
        raise DatabaseInitializationError(f"Missing tables after initialization: {missing}")
    logger.info("Exposure engine database initialized")


# =============================================================
# CUSTOM EXCEPTIONS
# =============================================================


class DatabasePersistenceError(Exception):
    """Raised when database persistence fails."""
    pass


class DatabaseConnectionError(DatabasePersistenceError):
    """Raised when database connection fails."""
    pass


class DatabaseInitializationError(DatabasePersistenceError):
    """Raised when database initialization fails."""
    pass


__all__ = [
    "build_engine",
    "create_database_engine",
    "get_engine",
    "get_session",
    "get_session_factory",
    "dispose_engine",
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
