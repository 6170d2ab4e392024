"""
Repository Layer Exceptions.

============================================================
PURPOSE
============================================================
Every database failure raised inside a repository is wrapped
in one of these exceptions and chained to the original error.
Callers (HTTP handlers, background jobs) decide whether to
retry; repositories never retry on their own.

============================================================
HIERARCHY
============================================================
RepositoryException
├── RecordNotFoundError
├── DuplicateRecordError
├── IntegrityError
├── ConnectionError
├── QueryError
└── UnsupportedDialectError

============================================================
"""

from typing import Any, Optional


class RepositoryException(Exception):
    """
    Base exception for all repository operations.

    Carries the repository name and operation so log lines and
    API error payloads can point at the failing call.
    """

    def __init__(
        self,
        message: str,
        repository_name: str,
        operation: str,
        details: Optional[dict] = None
    ) -> None:
        self.message = message
        self.repository_name = repository_name
        self.operation = operation
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        return f"[{self.repository_name}] {self.operation}: {self.message}"


class RecordNotFoundError(RepositoryException):
    """Raised when a record that must exist cannot be found."""

    def __init__(
        self,
        repository_name: str,
        record_id: Any,
        id_field: str = "id"
    ) -> None:
        super().__init__(
            message=f"Record with {id_field}={record_id} not found",
            repository_name=repository_name,
            operation="get",
            details={id_field: str(record_id)}
        )
        self.record_id = record_id
        self.id_field = id_field


class DuplicateRecordError(RepositoryException):
    """
    Raised when a unique constraint rejects a write.

    With atomic upserts this only surfaces for constraints other
    than the conflict target (e.g. a primary key collision).
    """

    def __init__(
        self,
        repository_name: str,
        operation: str,
        message: str
    ) -> None:
        super().__init__(
            message=f"Duplicate record: {message}",
            repository_name=repository_name,
            operation=operation,
        )


class IntegrityError(RepositoryException):
    """Raised on foreign key, NOT NULL or check constraint violations."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        message: str
    ) -> None:
        super().__init__(
            message=f"Integrity constraint violated: {message}",
            repository_name=repository_name,
            operation=operation,
        )


class ConnectionError(RepositoryException):
    """Raised when the database cannot be reached or the pool is exhausted."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Database connection failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error}
        )


class QueryError(RepositoryException):
    """Raised when a statement fails for any other reason."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Query failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error}
        )


class UnsupportedDialectError(RepositoryException):
    """Raised when an atomic upsert is requested on a dialect without ON CONFLICT."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        dialect: str
    ) -> None:
        super().__init__(
            message=f"Atomic upsert is not available for dialect '{dialect}'",
            repository_name=repository_name,
            operation=operation,
            details={"dialect": dialect}
        )
        self.dialect = dialect
