"""
Repository pattern implementation for the library circulation service.

Repositories wrap SQLAlchemy queries for one table each and are always bound
to a session owned by the caller. They never commit: the circulation engine
decides where a transaction begins and ends, so several repositories can take
part in the same atomic operation.

Read methods return pydantic models. Methods the engine uses to change state
work on ORM rows, which stay attached to the session until it commits.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy import asc, desc, func, select
from sqlalchemy.orm import Session

from .schema import Base

ModelType = TypeVar("ModelType", bound=Base)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)


def generate_id(prefix: str) -> str:
    """Build a primary key such as ``txn_9c2e41ab07d3``."""
    return f"{prefix}_{uuid4().hex[:12]}"


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


class BaseRepository(ABC, Generic[ModelType, ResponseSchemaType]):
    """
    Abstract base repository providing common read operations.

    Subclasses add the table-specific queries and writes.
    """

    def __init__(self, session: Session):
        """Initialize repository with database session."""
        self.session = session

    @property
    @abstractmethod
    def model_class(self) -> type[ModelType]:
        """Return the SQLAlchemy model class."""

    @property
    @abstractmethod
    def response_schema(self) -> type[ResponseSchemaType]:
        """Return the pydantic response schema."""

    def _to_response_model(self, db_obj: ModelType) -> ResponseSchemaType:
        """Convert database model to pydantic response model."""
        return self.response_schema.model_validate(db_obj, from_attributes=True)

    def get_row(self, id: str, lock: bool = False) -> ModelType | None:
        """
        Get the ORM row for an ID.

        Args:
            id: Entity ID
            lock: Take a row lock (``SELECT ... FOR UPDATE``) and reload the
                row from the database even if it is already in the session

        Returns:
            The row or None if not found
        """
        query = select(self.model_class).where(self.model_class.id == id)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(query).scalar_one_or_none()

    def get_by_id(self, id: str) -> ResponseSchemaType | None:
        """
        Get entity by ID.

        Returns:
            Pydantic model or None if not found
        """
        db_obj = self.get_row(id)
        if db_obj is None:
            return None
        return self._to_response_model(db_obj)

    def get_all(
        self,
        pagination: PaginationParams | None = None,
        order_by: str | None = None,
        order_desc: bool = False,
    ) -> PaginatedResponse[ResponseSchemaType]:
        """
        Get all entities with pagination and optional sorting.

        Args:
            pagination: Pagination parameters
            order_by: Field name to order by
            order_desc: Whether to order descending
        """
        query = select(self.model_class)

        if order_by and hasattr(self.model_class, order_by):
            order_field = getattr(self.model_class, order_by)
            query = query.order_by(desc(order_field) if order_desc else asc(order_field))

        return self._paginate(query, pagination)

    def exists(self, id: str) -> bool:
        """Check if entity exists by ID."""
        query = (
            select(func.count()).select_from(self.model_class).where(self.model_class.id == id)
        )
        return (self.session.execute(query).scalar() or 0) > 0

    def _count_by(self, column) -> dict[str, int]:
        rows = self.session.execute(
            select(column, func.count()).select_from(self.model_class).group_by(column)
        ).all()
        return {status.value: count for status, count in rows}

    def _paginate(self, query, pagination: PaginationParams | None):
        """Helper to paginate a select over this repository's table."""
        if not pagination:
            pagination = PaginationParams()

        pagination.validate_params()

        count_query = select(func.count()).select_from(query.subquery())
        total = self.session.execute(count_query).scalar() or 0

        query = query.offset(pagination.offset).limit(pagination.page_size)
        results = self.session.execute(query).scalars().all()

        return PaginatedResponse(
            items=[self._to_response_model(item) for item in results],
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            total_pages=(total + pagination.page_size - 1) // pagination.page_size,
            has_next=pagination.page * pagination.page_size < total,
            has_previous=pagination.page > 1,
        )
