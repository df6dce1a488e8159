"""
Borrow record models for the Circulation Engine.

A borrow record is created BORROWED when a copy is issued and moves exactly
once to one of the terminal states when the copy comes back (or is reported
lost). Penalty bookkeeping rides on the same record:

- penalty_amount is the assessed amount
- outstanding_balance is what is still owed after payments
- settlement_method records which path closed the penalty
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BorrowStatus(str, Enum):
    """Lifecycle state of a borrow record."""

    BORROWED = "borrowed"
    RETURNED = "returned"
    LATE_RETURNED = "late_returned"
    DAMAGED = "damaged"
    LOST = "lost"

    @property
    def is_terminal(self) -> bool:
        return self is not BorrowStatus.BORROWED


class PenaltyType(str, Enum):
    NONE = "none"
    LATE = "late"
    DAMAGE = "damage"
    LOST = "lost"


class PenaltyStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    PAID = "paid"
    WAIVED = "waived"

    @property
    def is_settled(self) -> bool:
        return self in (PenaltyStatus.PAID, PenaltyStatus.WAIVED)


class SettlementMethod(str, Enum):
    """How a penalty was closed."""

    PAYMENT = "payment"
    MANUAL = "manual"
    WAIVER = "waiver"


def overdue_days_between(due_date: date, as_of: date) -> int:
    """Whole days past the due date, never negative."""
    return max(0, (as_of - due_date).days)


def resolve_return_status(damaged: bool, lost: bool, overdue_days: int) -> BorrowStatus:
    """Pick the terminal status for a return.

    Loss outranks damage, damage outranks lateness.
    """
    if lost:
        return BorrowStatus.LOST
    if damaged:
        return BorrowStatus.DAMAGED
    if overdue_days > 0:
        return BorrowStatus.LATE_RETURNED
    return BorrowStatus.RETURNED


class BorrowRecord(BaseModel):
    """A single loan of one copy to one member."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique identifier for the borrow record")
    book_id: str
    student_id: str

    borrowed_at: datetime
    due_date: date
    returned_at: datetime | None = None

    status: BorrowStatus = BorrowStatus.BORROWED

    penalty_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    amount_paid: Decimal = Field(default=Decimal("0.00"), ge=0)
    outstanding_balance: Decimal = Field(default=Decimal("0.00"), ge=0)
    penalty_type: PenaltyType = PenaltyType.NONE
    penalty_status: PenaltyStatus = PenaltyStatus.NONE
    settlement_method: SettlementMethod | None = None

    version_id: int = Field(default=1, description="Optimistic lock counter")

    @model_validator(mode="after")
    def validate_return_state(self) -> "BorrowRecord":
        """A record carries a return timestamp exactly when it is terminal."""
        if (self.returned_at is not None) != self.status.is_terminal:
            raise ValueError("returned_at must be set exactly when the record is terminal")
        return self

    def overdue_days(self, as_of: date) -> int:
        """Overdue days as of a date, frozen at the return date once returned."""
        if self.returned_at is not None:
            as_of = self.returned_at.date()
        return overdue_days_between(self.due_date, as_of)


class ReturnOutcome(BaseModel):
    """Result of processing a return.

    When the freed copy went straight to the head of the waitlist,
    `promoted_student_id` and `issued_record` describe that hand-off.
    """

    record: BorrowRecord
    promoted_student_id: str | None = None
    issued_record: BorrowRecord | None = None
