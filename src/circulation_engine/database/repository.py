"""
Repository pattern implementation for the Circulation Engine.

Tool handlers and the reconciliation job never touch SQLAlchemy objects
directly: repositories run the queries, enforce the state machines, commit,
and hand back Pydantic models that serialize cleanly into responses.

The base repository provides the read/create/update operations shared by
the catalog collaborators (books, members). The circulation, penalty,
request and waitlist repositories build their domain operations on the
same session helpers and pagination types.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import Select, asc, desc, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import (
    AlreadyOnWaitlistError,
    AlreadyProcessedError,
    AlreadyReturnedError,
    BookAvailableError,
    ConcurrencyConflictError,
    DuplicateError,
    InvalidAmountError,
    MemberNotEligibleError,
    NotFoundError,
    OutOfStockError,
    ReasonRequiredError,
    RepositoryException,
    RequestLimitExceededError,
)
from .schema import Base
from .session import safe_commit, safe_query

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)

__all__ = [
    "AlreadyOnWaitlistError",
    "AlreadyProcessedError",
    "AlreadyReturnedError",
    "BaseRepository",
    "BookAvailableError",
    "ConcurrencyConflictError",
    "DuplicateError",
    "InvalidAmountError",
    "MemberNotEligibleError",
    "NotFoundError",
    "OutOfStockError",
    "PaginatedResponse",
    "PaginationParams",
    "ReasonRequiredError",
    "RepositoryException",
    "RequestLimitExceededError",
    "paginate",
]


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


def paginate(
    session: Session,
    query: Select,
    pagination: PaginationParams | None,
    converter: Callable[[Any], ResponseSchemaType],
    error_msg: str,
) -> PaginatedResponse[ResponseSchemaType]:
    """Run a select with offset/limit and wrap it in a PaginatedResponse."""
    pagination = pagination or PaginationParams()
    pagination.validate_params()

    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    total = (
        safe_query(session, lambda s: s.execute(count_query).scalar(), f"{error_msg} (count)")
        or 0
    )

    page_query = query.offset(pagination.offset).limit(pagination.page_size)
    rows = safe_query(session, lambda s: s.execute(page_query).scalars().all(), error_msg)

    return PaginatedResponse(
        items=[converter(row) for row in rows],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
        total_pages=(total + pagination.page_size - 1) // pagination.page_size,
        has_next=pagination.page * pagination.page_size < total,
        has_previous=pagination.page > 1,
    )


class BaseRepository(
    ABC, Generic[ModelType, CreateSchemaType, UpdateSchemaType, ResponseSchemaType]
):
    """
    Abstract base repository providing common read/write operations.

    All methods go through safe_query and safe_commit so that storage
    failures surface as RepositoryException.
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
        """Return the Pydantic response schema."""

    def _to_response_model(self, db_obj: ModelType) -> ResponseSchemaType:
        """Convert database model to Pydantic response model."""
        return self.response_schema.model_validate(db_obj, from_attributes=True)

    def _get_db_object(self, id: str, *, for_update: bool = False) -> ModelType | None:
        query = select(self.model_class).where(self.model_class.id == id)
        if for_update:
            query = query.with_for_update()
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            f"Failed to get {self.model_class.__name__} by ID",
        )

    def get_by_id(self, id: str) -> ResponseSchemaType | None:
        """
        Get entity by ID.

        Returns:
            Pydantic model or None if not found
        """
        db_obj = self._get_db_object(id)
        if db_obj is None:
            return None
        return self._to_response_model(db_obj)

    def get_or_raise(self, id: str) -> ResponseSchemaType:
        """
        Get entity by ID.

        Raises:
            NotFoundError: If no entity has that ID
        """
        entity = self.get_by_id(id)
        if entity is None:
            raise NotFoundError(f"{self.model_class.__name__} {id} not found")
        return entity

    def get_all(
        self,
        pagination: PaginationParams | None = None,
        order_by: str | None = None,
        order_desc: bool = False,
    ) -> PaginatedResponse[ResponseSchemaType]:
        """Get all entities with pagination and optional sorting."""
        query = select(self.model_class)

        if order_by and hasattr(self.model_class, order_by):
            order_field = getattr(self.model_class, order_by)
            query = query.order_by(desc(order_field) if order_desc else asc(order_field))
        else:
            query = query.order_by(self.model_class.id)

        return paginate(
            self.session,
            query,
            pagination,
            self._to_response_model,
            f"Failed to list {self.model_class.__name__}",
        )

    def create(self, data: CreateSchemaType) -> ResponseSchemaType:
        """
        Create new entity.

        Raises:
            DuplicateError: If entity already exists
            RepositoryException: On other database errors
        """
        db_obj = self.model_class(**data.model_dump())
        self.session.add(db_obj)
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateError(f"{self.model_class.__name__} already exists: {e.orig}") from e
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryException(f"Database error: {e!s}") from e
        self.session.refresh(db_obj)
        return self._to_response_model(db_obj)

    def update(self, id: str, data: UpdateSchemaType) -> ResponseSchemaType:
        """
        Update existing entity.

        Raises:
            NotFoundError: If no entity has that ID
        """
        db_obj = self._get_db_object(id)
        if db_obj is None:
            raise NotFoundError(f"{self.model_class.__name__} {id} not found")

        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(db_obj, field, value)

        safe_commit(self.session, f"update {self.model_class.__name__}")
        self.session.refresh(db_obj)
        return self._to_response_model(db_obj)

    def exists(self, id: str) -> bool:
        query = select(func.count()).select_from(self.model_class).where(self.model_class.id == id)
        count = safe_query(self.session, lambda s: s.execute(query).scalar(), "Failed to check existence")
        return count > 0
