"""
Circulation Engine Models.

Pydantic models for the records the engine reads and writes, plus the pure
policy functions (return status resolution, penalty pricing, waitlist
priority) that the repositories apply.
"""

from .book import Book
from .borrow import (
    BorrowRecord,
    BorrowStatus,
    PenaltyStatus,
    PenaltyType,
    ReturnOutcome,
    SettlementMethod,
    overdue_days_between,
    resolve_return_status,
)
from .member import Member, MembershipType, MemberStatus
from .penalty import (
    PenaltyAction,
    PenaltyPolicy,
    PenaltyQuote,
    PenaltySummary,
    PenaltyTransaction,
    ReconciliationReport,
    calculate_penalty,
    to_money,
)
from .request import (
    AcquisitionRequest,
    BulkApprovalResult,
    FailedRequest,
    IssueRequest,
    RequestStatus,
)
from .waitlist import (
    ReturnHistory,
    WaitlistEntry,
    WaitlistQueue,
    WaitlistStatus,
    WaitlistWeights,
    compute_priority_score,
    estimated_wait_days,
)

__all__ = [
    "AcquisitionRequest",
    "Book",
    "BorrowRecord",
    "BorrowStatus",
    "BulkApprovalResult",
    "FailedRequest",
    "IssueRequest",
    "Member",
    "MemberStatus",
    "MembershipType",
    "PenaltyAction",
    "PenaltyPolicy",
    "PenaltyQuote",
    "PenaltyStatus",
    "PenaltySummary",
    "PenaltyTransaction",
    "PenaltyType",
    "ReconciliationReport",
    "RequestStatus",
    "ReturnHistory",
    "ReturnOutcome",
    "SettlementMethod",
    "WaitlistEntry",
    "WaitlistQueue",
    "WaitlistStatus",
    "WaitlistWeights",
    "calculate_penalty",
    "compute_priority_score",
    "estimated_wait_days",
    "overdue_days_between",
    "resolve_return_status",
    "to_money",
]
