"""
Issue and acquisition request models.

Both request kinds move from PENDING to exactly one of APPROVED or REJECTED
and never change again. A rejection always carries a reason.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


class IssueRequest(BaseModel):
    """A member asking for a copy of a catalog title."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    book_id: str
    requested_at: datetime
    status: RequestStatus = RequestStatus.PENDING
    processed_at: datetime | None = None
    processed_by: str | None = None
    rejection_reason: str | None = None
    borrow_record_id: str | None = Field(
        None, description="Loan created when the request was approved"
    )

    @model_validator(mode="after")
    def validate_rejection(self) -> "IssueRequest":
        if self.status == RequestStatus.REJECTED and not self.rejection_reason:
            raise ValueError("Rejected requests must carry a reason")
        return self


class AcquisitionRequest(BaseModel):
    """A member asking the library to buy a title it does not stock."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    book_name: str
    author: str
    publisher: str | None = None
    edition: str | None = None
    genre: str | None = None
    justification: str | None = None
    status: RequestStatus = RequestStatus.PENDING
    requested_at: datetime
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    rejection_reason: str | None = None
    book_id: str | None = Field(None, description="Catalog entry stocked on approval")


class FailedRequest(BaseModel):
    id: str
    reason: str = Field(..., description="Error code explaining why the item was not approved")


class BulkApprovalResult(BaseModel):
    """Per-item outcome of a bulk approval.

    The batch is best effort: items that fail stay PENDING and are listed in
    `failed_requests` with the error code that stopped them.
    """

    approved_count: int = 0
    succeeded: list[str] = Field(default_factory=list)
    failed_requests: list[FailedRequest] = Field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failed_requests)
