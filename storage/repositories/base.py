"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Provides common functionality for all repositories including:
- Session management patterns
- Error handling wrappers
- Dialect-aware atomic upserts (INSERT ... ON CONFLICT)
- Logging setup

============================================================
USAGE
============================================================
All domain repositories inherit from BaseRepository.
Session is injected via constructor; repositories flush but
never commit. The caller owns the transaction boundary.

============================================================
"""

import logging
from abc import ABC
from typing import Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy.exc import (
    IntegrityError as SQLAlchemyIntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session

from storage.models.base import Base
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    RecordNotFoundError,
    UnsupportedDialectError,
)


# Type variable for ORM model
T = TypeVar("T", bound=Base)


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base class for all repositories.

    ============================================================
    RESPONSIBILITIES
    ============================================================
    - Wraps database errors in repository exceptions
    - Builds atomic upserts for the bound dialect
    - Manages logging for all operations

    ============================================================
    USAGE
    ============================================================
    class MyRepository(BaseRepository[MyModel]):
        def __init__(self, session: Session):
            super().__init__(session, MyModel, "MyRepository")

    ============================================================
    """

    def __init__(
        self,
        session: Session,
        model_class: Type[T],
        repository_name: str
    ) -> None:
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy session (injected)
            model_class: The ORM model class this repository manages
            repository_name: Name for logging and error messages
        """
        self._session = session
        self._model_class = model_class
        self._repository_name = repository_name
        self._logger = logging.getLogger(f"repository.{repository_name}")

    @property
    def session(self) -> Session:
        """Get the current session."""
        return self._session

    @property
    def model_class(self) -> Type[T]:
        """Get the managed model class."""
        return self._model_class

    @property
    def dialect_name(self) -> str:
        """Name of the dialect the session is bound to."""
        return self._session.get_bind().dialect.name

    # =========================================================
    # PROTECTED HELPER METHODS
    # =========================================================

    def _handle_db_error(
        self,
        error: Exception,
        operation: str,
        context: Optional[dict] = None
    ) -> None:
        """
        Handle database errors by wrapping in repository exceptions.

        Args:
            error: The original exception
            operation: Name of the operation that failed
            context: Additional context for logging

        Raises:
            RepositoryException: Always raises appropriate exception
        """
        context = context or {}
        self._logger.error(
            f"Database error in {operation}: {error}",
            extra={"context": context},
            exc_info=True
        )

        if isinstance(error, OperationalError):
            raise ConnectionError(
                repository_name=self._repository_name,
                operation=operation,
                original_error=str(error)
            ) from error

        if isinstance(error, SQLAlchemyIntegrityError):
            error_str = str(error).lower()
            if "duplicate" in error_str or "unique" in error_str:
                raise DuplicateRecordError(
                    repository_name=self._repository_name,
                    operation=operation,
                    message=str(error.orig)
                ) from error

            raise IntegrityError(
                repository_name=self._repository_name,
                operation=operation,
                message=str(error.orig)
            ) from error

        raise QueryError(
            repository_name=self._repository_name,
            operation=operation,
            original_error=str(error)
        ) from error

    def _add(self, entity: T, operation: str = "add") -> T:
        """
        Add an entity to the session and flush it.

        Args:
            entity: The entity to add
            operation: Operation name used in error reporting

        Returns:
            The added entity
        """
        try:
            self._session.add(entity)
            self._session.flush()
            self._logger.debug(f"Added entity: {entity}")
            return entity
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation, {"entity": str(entity)})
            raise  # Never reached, but satisfies type checker

    def _get_by_id_or_raise(self, record_id: Any, id_field: str = "id") -> T:
        """
        Get an entity by its primary key, raising if not found.

        Raises:
            RecordNotFoundError: If entity does not exist
        """
        try:
            entity = self._session.get(self._model_class, record_id)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get_by_id", {id_field: str(record_id)})
            raise
        if entity is None:
            raise RecordNotFoundError(
                repository_name=self._repository_name,
                record_id=record_id,
                id_field=id_field
            )
        return entity

    def _execute_query(self, stmt: Any, operation: str = "query") -> List[Any]:
        """
        Execute a select statement and return all scalar results.

        Args:
            stmt: SQLAlchemy select statement
            operation: Operation name used in error reporting

        Returns:
            List of entities
        """
        try:
            result = self._session.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise

    def _execute_rows(self, stmt: Any, operation: str = "query_rows") -> List[Any]:
        """Execute a statement and return raw result rows (for aggregates)."""
        try:
            result = self._session.execute(stmt)
            return list(result.all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise

    def _execute_scalar(self, stmt: Any, operation: str = "query_scalar") -> Optional[Any]:
        """
        Execute a select statement and return single result.

        Returns:
            Single entity or None
        """
        try:
            result = self._session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise

    def _upsert(
        self,
        values: Dict[str, Any],
        conflict_columns: Sequence[str],
        update_columns: Sequence[str],
        operation: str = "upsert"
    ) -> None:
        """
        Insert a row or update it in place when the conflict key exists.

        Runs as one INSERT ... ON CONFLICT DO UPDATE statement, so two
        concurrent writers for the same key cannot produce duplicate rows.
        Pending ORM state is flushed first so the statement sees it.

        Args:
            values: Full column -> value mapping for the insert branch
            conflict_columns: Columns of the unique index forming the key
            update_columns: Columns overwritten on the conflict branch
            operation: Operation name used in error reporting

        Raises:
            UnsupportedDialectError: If the dialect has no ON CONFLICT
        """
        dialect = self.dialect_name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise UnsupportedDialectError(
                repository_name=self._repository_name,
                operation=operation,
                dialect=dialect
            )

        stmt = insert(self._model_class).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_={column: stmt.excluded[column] for column in update_columns},
        )

        try:
            self._session.flush()
            self._session.execute(stmt)
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation, {
                column: str(values.get(column)) for column in conflict_columns
            })
            raise
