"""
Waitlist models and the priority formula.

A student's score is built from three parts:

    waiting_days * waiting_weight
    + premium bonus (premium members only)
    + return history term (negative, one capped term per late, damaged, lost return)

The formula is pure and never decreases as waiting days grow, so a queue
only reorders when somebody joins, leaves, is promoted, or their history
changes.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..config import EngineConfig


class WaitlistStatus(str, Enum):
    WAITING = "waiting"
    LEFT = "left"
    PROMOTED = "promoted"


class WaitlistWeights(BaseModel):
    """Tunable weights of the priority formula."""

    waiting_weight: float = Field(default=1.0, ge=0)
    premium_bonus: float = 8.0
    late_penalty: float = Field(default=-3.0, le=0)
    late_cap: int = Field(default=5, ge=0)
    damaged_penalty: float = Field(default=-8.0, le=0)
    damaged_cap: int = Field(default=3, ge=0)
    lost_penalty: float = Field(default=-15.0, le=0)
    lost_cap: int = Field(default=2, ge=0)
    days_per_position: int = Field(default=7, ge=0)

    @classmethod
    def from_config(cls, config: EngineConfig) -> "WaitlistWeights":
        return cls(
            waiting_weight=config.waitlist_waiting_weight,
            premium_bonus=config.waitlist_premium_bonus,
            late_penalty=config.waitlist_late_penalty,
            late_cap=config.waitlist_late_cap,
            damaged_penalty=config.waitlist_damaged_penalty,
            damaged_cap=config.waitlist_damaged_cap,
            lost_penalty=config.waitlist_lost_penalty,
            lost_cap=config.waitlist_lost_cap,
            days_per_position=config.estimated_days_per_position,
        )


class ReturnHistory(BaseModel):
    """Counts of a student's problem returns."""

    late: int = Field(default=0, ge=0)
    damaged: int = Field(default=0, ge=0)
    lost: int = Field(default=0, ge=0)


def return_history_penalty(history: ReturnHistory, weights: WaitlistWeights) -> float:
    return (
        weights.late_penalty * min(history.late, weights.late_cap)
        + weights.damaged_penalty * min(history.damaged, weights.damaged_cap)
        + weights.lost_penalty * min(history.lost, weights.lost_cap)
    )


def compute_priority_score(
    waiting_days: int,
    is_premium: bool,
    history: ReturnHistory,
    weights: WaitlistWeights,
) -> float:
    if waiting_days < 0:
        raise ValueError("waiting_days cannot be negative")
    bonus = weights.premium_bonus if is_premium else 0.0
    return round(
        waiting_days * weights.waiting_weight + bonus + return_history_penalty(history, weights),
        4,
    )


def estimated_wait_days(position: int, weights: WaitlistWeights) -> int:
    return position * weights.days_per_position


class WaitlistEntry(BaseModel):
    """A student's place in one book's queue."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    book_id: str
    student_id: str
    joined_at: datetime
    status: WaitlistStatus = WaitlistStatus.WAITING
    queue_position: int | None = Field(None, ge=1, description="1-based, dense within a book")
    priority_score: float = 0.0
    waiting_days: int = Field(default=0, ge=0)
    estimated_wait_days: int | None = Field(None, ge=0)
    membership_bonus: float = 0.0
    return_history_penalty: float = 0.0
    left_at: datetime | None = None
    promoted_at: datetime | None = None


class WaitlistQueue(BaseModel):
    """All waiting entries for one book, best first."""

    book_id: str
    book_title: str | None = None
    available_copies: int = 0
    entries: list[WaitlistEntry] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.entries)
