"""
Member model for the Circulation Engine.

A member borrows books, files issue requests and joins waitlists. Only
members whose status is APPROVED are in good standing.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class MemberStatus(str, Enum):
    """Enumeration of membership states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class MembershipType(str, Enum):
    NORMAL = "normal"
    PREMIUM = "premium"


class Member(BaseModel):
    """A library member as seen by circulation."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique identifier for the member")

    name: str = Field(..., min_length=2, max_length=200)

    email: EmailStr = Field(
        ...,
        description="Address used for approval and promotion notices",
        examples=["asha.rao@example.edu"],
    )

    status: MemberStatus = Field(default=MemberStatus.PENDING)

    membership_type: MembershipType = Field(default=MembershipType.NORMAL)

    created_at: datetime | None = None

    @property
    def in_good_standing(self) -> bool:
        return self.status == MemberStatus.APPROVED

    @property
    def is_premium(self) -> bool:
        return self.membership_type == MembershipType.PREMIUM
