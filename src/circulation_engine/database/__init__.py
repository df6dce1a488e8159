"""
Database package for the Circulation Engine.

This package provides:
- SQLAlchemy schema definitions (schema.py)
- Session management and connection handling (session.py)
- The error taxonomy and repository base types (errors.py, repository.py)
- One repository per component: circulation, penalties, issue requests,
  acquisitions, waitlists, plus the catalog/member collaborators
"""

from .acquisition_repository import AcquisitionCreateSchema, AcquisitionRepository
from .book_repository import BookCreateSchema, BookRepository
from .circulation_repository import CirculationRepository
from .member_repository import MemberCreateSchema, MemberRepository
from .penalty_repository import PenaltyRepository
from .repository import (
    AlreadyOnWaitlistError,
    AlreadyProcessedError,
    AlreadyReturnedError,
    BaseRepository,
    BookAvailableError,
    ConcurrencyConflictError,
    DuplicateError,
    InvalidAmountError,
    MemberNotEligibleError,
    NotFoundError,
    OutOfStockError,
    PaginatedResponse,
    PaginationParams,
    ReasonRequiredError,
    RepositoryException,
    RequestLimitExceededError,
)
from .request_repository import IssueRequestRepository
from .schema import Base
from .session import (
    DatabaseManager,
    get_db_manager,
    get_session,
    safe_commit,
    safe_query,
    session_scope,
    set_db_manager,
)
from .waitlist_repository import WaitlistRepository

__all__ = [
    "AcquisitionCreateSchema",
    "AcquisitionRepository",
    "AlreadyOnWaitlistError",
    "AlreadyProcessedError",
    "AlreadyReturnedError",
    "Base",
    "BaseRepository",
    "BookAvailableError",
    "BookCreateSchema",
    "BookRepository",
    "CirculationRepository",
    "ConcurrencyConflictError",
    "DatabaseManager",
    "DuplicateError",
    "InvalidAmountError",
    "IssueRequestRepository",
    "MemberCreateSchema",
    "MemberNotEligibleError",
    "MemberRepository",
    "NotFoundError",
    "OutOfStockError",
    "PaginatedResponse",
    "PaginationParams",
    "PenaltyRepository",
    "ReasonRequiredError",
    "RepositoryException",
    "RequestLimitExceededError",
    "WaitlistRepository",
    "get_db_manager",
    "get_session",
    "safe_commit",
    "safe_query",
    "session_scope",
    "set_db_manager",
]
