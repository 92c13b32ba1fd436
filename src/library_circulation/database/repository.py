"""
Repository pattern implementation for the Library Circulation service.

Repositories are the narrow write API of the system. Every mutation of a
Book, Loan or Member goes through one of them, and they are the only place
that dispatches the consistency rules in ``database.rules``:

1. **Rule enforcement**: before-rules may correct or reject the new row,
   after-rules perform their side effects in the same transaction
2. **Atomicity**: a rejected write is rolled back, so no partial state persists
3. **Serialization**: methods return Pydantic models, never live ORM rows

The base repository provides the CRUD every table shares. Tables without
rules (authors, categories, staff) dispatch into an empty rule list, so
there is a single write path for everything.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import date
from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import asc, desc, func, inspect, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import get_config
from ..observability import trace_repository_operation
from .events import Action, MutationEvent, Phase, registry, snapshot_row
from .schema import Base
from .session import safe_commit, safe_query

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)


class RepositoryException(Exception):
    """Base exception for repository operations."""


class NotFoundError(RepositoryException):
    """Raised when an entity is not found."""


class DuplicateError(RepositoryException):
    """Raised when attempting to create a duplicate entity."""


class ValidationError(RepositoryException):
    """Raised when a write carries malformed values (bad email, copy counts, dates).

    The write is rejected atomically; nothing it touched is persisted.
    """


class IntegrityViolation(RepositoryException):
    """Raised when a write would break a cross-table relationship.

    Deleting a book that still has loans in flight is the canonical case.
    """


class PaginationParams(BaseModel):
    """Standard pagination parameters for list operations."""

    page: int = 1
    page_size: int = 20

    @property
    def offset(self) -> int:
        """Calculate offset for SQL queries."""
        return (self.page - 1) * self.page_size

    def validate_params(self) -> None:
        """Validate pagination parameters."""
        if self.page < 1:
            raise ValueError("Page must be >= 1")
        if self.page_size < 1 or self.page_size > 100:
            raise ValueError("Page size must be between 1 and 100")


class PaginatedResponse(BaseModel, Generic[ResponseSchemaType]):
    """Standard paginated response for list operations."""

    items: list[ResponseSchemaType]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool


class BaseRepository(
    ABC, Generic[ModelType, CreateSchemaType, UpdateSchemaType, ResponseSchemaType]
):
    """
    Abstract base repository providing common CRUD operations.

    All reads go through safe_query. All writes go through ``_write``, which
    dispatches the registered rules around the row and commits, so storage
    failures and rule rejections both surface as repository errors.

    ``today`` is the clock the rules compare due dates against; tests pass a
    fixed one.
    """

    def __init__(
        self,
        session: Session,
        today: Callable[[], date] | None = None,
        daily_rate: float | None = None,
    ):
        """Initialize repository with database session."""
        self.session = session
        self._today = today or date.today
        self.daily_rate = get_config().fine_daily_rate if daily_rate is None else daily_rate

    def today(self) -> date:
        return self._today()

    def _write(
        self,
        db_obj: Base,
        action: Action,
        old: dict[str, Any] | None = None,
        operation: str | None = None,
    ) -> None:
        """
        Run one row write through the rule dispatcher and commit it.

        The new values must already be applied to ``db_obj``. Before-rules
        see them unflushed; after-rules run once the row is flushed, so
        their side effects land in the same transaction.

        Raises:
            ValidationError / IntegrityViolation: A rule rejected the write
            DuplicateError: A unique column already holds the value
            RepositoryException: On other database errors
        """
        entity = type(db_obj)
        operation = operation or action.value
        event = MutationEvent(
            session=self.session,
            entity=entity,
            action=action,
            target=db_obj,
            old=old or {},
            today=self.today(),
            daily_rate=self.daily_rate,
        )

        try:
            with trace_repository_operation(
                self.__class__.__name__, operation, entity.__tablename__
            ):
                registry.dispatch(Phase.BEFORE, event)
                if action is Action.INSERT:
                    self.session.add(db_obj)
                elif action is Action.DELETE:
                    self.session.delete(db_obj)
                self.session.flush()
                registry.dispatch(Phase.AFTER, event)
                safe_commit(self.session, f"{operation} {entity.__name__}")
        except RepositoryException:
            self.session.rollback()
            raise
        except IntegrityError as e:
            self.session.rollback()
            if "UNIQUE" in str(e.orig).upper():
                raise DuplicateError(f"Entity already exists: {e.orig}") from e
            raise IntegrityViolation(f"Constraint violated: {e.orig}") from e
        except (SQLAlchemyError, ValueError, TypeError) as e:
            self.session.rollback()
            raise RepositoryException(f"Database error: {e!s}") from e

    def _update_row(self, db_obj: ModelType, values: dict[str, Any], operation: str = "update") -> None:
        """
        Apply new column values to a loaded row and write it.

        Raises:
            ValidationError: If a value is None for a NOT NULL column. The
                row is left untouched.
        """
        columns = inspect(type(db_obj)).columns
        for field, value in values.items():
            column = columns.get(field)
            if value is None and column is not None and not column.nullable:
                raise ValidationError(
                    f"{type(db_obj).__name__}.{field} cannot be set to null"
                )

        old = snapshot_row(db_obj)
        for field, value in values.items():
            setattr(db_obj, field, value)
        self._write(db_obj, Action.UPDATE, old=old, operation=operation)

    @property
    @abstractmethod
    def model_class(self) -> type[ModelType]:
        """Return the SQLAlchemy model class."""

    @property
    @abstractmethod
    def response_schema(self) -> type[ResponseSchemaType]:
        """Return the Pydantic response schema."""

    def _to_response_model(self, db_obj: ModelType) -> ResponseSchemaType:
        """Convert database model to Pydantic response model."""
        return self.response_schema.model_validate(db_obj, from_attributes=True)

    def _get_db_obj(self, id: int, for_update: bool = False) -> ModelType | None:
        """Load the ORM row behind an ID, optionally locking it for the write."""
        query = select(self.model_class).where(self.model_class.id == id)
        if for_update:
            query = query.with_for_update()
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            f"Failed to get {self.model_class.__name__} by ID",
        )

    def _require_db_obj(self, id: int, for_update: bool = False) -> ModelType:
        db_obj = self._get_db_obj(id, for_update=for_update)
        if db_obj is None:
            raise NotFoundError(f"{self.model_class.__name__} {id} not found")
        return db_obj

    def get_by_id(self, id: int) -> ResponseSchemaType | None:
        """
        Get entity by ID.

        Returns:
            Pydantic model or None if not found
        """
        db_obj = self._get_db_obj(id)
        if db_obj is None:
            return None
        return self._to_response_model(db_obj)

    def get_all(
        self,
        pagination: PaginationParams | None = None,
        order_by: str | None = None,
        order_desc: bool = False,
    ) -> list[ResponseSchemaType] | PaginatedResponse[ResponseSchemaType]:
        """
        Get all entities with optional pagination and sorting.

        Args:
            pagination: Pagination parameters
            order_by: Field name to order by
            order_desc: Whether to order descending

        Returns:
            List of entities or paginated response
        """
        query = select(self.model_class)

        if order_by and hasattr(self.model_class, order_by):
            order_field = getattr(self.model_class, order_by)
            query = query.order_by(desc(order_field) if order_desc else asc(order_field))
        else:
            query = query.order_by(self.model_class.id)

        if pagination:
            pagination.validate_params()

            count_query = select(func.count()).select_from(self.model_class)
            total = (
                safe_query(
                    self.session,
                    lambda s: s.execute(count_query).scalar(),
                    "Failed to get total count",
                )
                or 0
            )

            query = query.offset(pagination.offset).limit(pagination.page_size)
            results = safe_query(
                self.session,
                lambda s: s.execute(query).scalars().all(),
                "Failed to get paginated results",
            )

            return PaginatedResponse(
                items=[self._to_response_model(item) for item in results],
                total=total,
                page=pagination.page,
                page_size=pagination.page_size,
                total_pages=(total + pagination.page_size - 1) // pagination.page_size,
                has_next=pagination.page * pagination.page_size < total,
                has_previous=pagination.page > 1,
            )

        results = safe_query(
            self.session, lambda s: s.execute(query).scalars().all(), "Failed to get all results"
        )
        return [self._to_response_model(item) for item in results]

    def _create_values(self, data: CreateSchemaType) -> dict[str, Any]:
        """Column values for a new row; override to fill derived defaults."""
        return data.model_dump()

    def create(self, data: CreateSchemaType) -> ResponseSchemaType:
        """
        Create new entity.

        Raises:
            DuplicateError: If a unique column already holds the value
            ValidationError: If a rule rejects the new row
            RepositoryException: On other database errors
        """
        db_obj = self.model_class(**self._create_values(data))
        self._write(db_obj, Action.INSERT, operation="create")
        self.session.refresh(db_obj)
        return self._to_response_model(db_obj)

    def update(self, id: int, data: UpdateSchemaType) -> ResponseSchemaType:
        """
        Update existing entity with the fields set on ``data``.

        Raises:
            NotFoundError: If the entity doesn't exist
            ValidationError: If a rule rejects the new values
        """
        db_obj = self._require_db_obj(id, for_update=True)
        self._update_row(db_obj, data.model_dump(exclude_unset=True))
        self.session.refresh(db_obj)
        return self._to_response_model(db_obj)

    def delete(self, id: int) -> bool:
        """
        Delete entity by ID.

        Returns:
            True if deleted, False if not found
        """
        db_obj = self._get_db_obj(id, for_update=True)
        if db_obj is None:
            return False

        self._write(db_obj, Action.DELETE, old=snapshot_row(db_obj), operation="delete")
        return True

    def exists(self, id: int) -> bool:
        """Check if entity exists by ID."""
        query = select(func.count()).select_from(self.model_class).where(self.model_class.id == id)
        count = safe_query(self.session, lambda s: s.execute(query).scalar(), "Failed to check existence")
        return count > 0
