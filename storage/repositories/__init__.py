"""
Repository Layer Package.

============================================================
PURPOSE
============================================================
All database access of the exposure engine goes through
repository classes derived from BaseRepository.

============================================================
ARCHITECTURE PRINCIPLES
============================================================
1. Session Injection: Sessions are injected, not created internally
2. Explicit Methods: Clear method names per query
3. Atomic Upserts: Keyed writes use INSERT ... ON CONFLICT
4. Exception Handling: All DB errors wrapped in repository exceptions

============================================================
"""

from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    RecordNotFoundError,
    RepositoryException,
    UnsupportedDialectError,
)

__all__ = [
    "BaseRepository",
    "RepositoryException",
    "RecordNotFoundError",
    "DuplicateRecordError",
    "IntegrityError",
    "ConnectionError",
    "QueryError",
    "UnsupportedDialectError",
]
