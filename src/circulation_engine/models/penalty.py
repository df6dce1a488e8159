"""
Penalty policy and arithmetic.

The functions here are pure: given a book price, an overdue count and the
return condition they produce the same quote every time. Both the ledger
writes in the penalty repository and the read-only fine preview go through
`calculate_penalty`, so clients never need to re-derive the fine rules.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..config import EngineConfig
from .borrow import PenaltyStatus, PenaltyType

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Decimal | int | str) -> Decimal:
    """Round to whole cents, half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class PenaltyPolicy(BaseModel):
    """Tariff used to price late, damaged and lost returns."""

    late_fee_rate: Decimal = Field(default=Decimal("0.10"), ge=0)
    damage_replacement_factor: Decimal = Field(default=Decimal("1.0"), ge=0)
    lost_replacement_factor: Decimal = Field(default=Decimal("1.0"), ge=0)
    damage_flat_fee: Decimal = Field(default=ZERO, ge=0)
    lost_flat_fee: Decimal = Field(default=ZERO, ge=0)

    @classmethod
    def from_config(cls, config: EngineConfig) -> "PenaltyPolicy":
        return cls(
            late_fee_rate=config.late_fee_rate,
            damage_replacement_factor=config.damage_replacement_factor,
            lost_replacement_factor=config.lost_replacement_factor,
            damage_flat_fee=config.damage_flat_fee,
            lost_flat_fee=config.lost_flat_fee,
        )

    def daily_rate(self, mrp: Decimal | None) -> Decimal | None:
        """Per-day late fee, or None when the book has no MRP on file."""
        if mrp is None:
            return None
        return to_money(mrp * self.late_fee_rate)

    def replacement_cost(self, penalty_type: PenaltyType, mrp: Decimal | None) -> Decimal:
        if penalty_type is PenaltyType.LOST:
            factor, flat = self.lost_replacement_factor, self.lost_flat_fee
        elif penalty_type is PenaltyType.DAMAGE:
            factor, flat = self.damage_replacement_factor, self.damage_flat_fee
        else:
            return ZERO
        if mrp is None:
            return to_money(flat)
        return to_money(mrp * factor)


class PenaltyQuote(BaseModel):
    """What the engine would charge for a record as of a given day."""

    borrow_record_id: str | None = None
    as_of: date
    overdue_days: int = Field(..., ge=0)
    mrp: Decimal | None = None
    daily_rate: Decimal | None = Field(
        None, description="None when the book has no MRP, in which case no late fee accrues"
    )
    late_amount: Decimal = ZERO
    replacement_amount: Decimal = ZERO
    total: Decimal = ZERO
    penalty_type: PenaltyType = PenaltyType.NONE

    @property
    def mrp_known(self) -> bool:
        return self.mrp is not None


def calculate_penalty(
    *,
    mrp: Decimal | None,
    overdue_days: int,
    damaged: bool,
    lost: bool,
    policy: PenaltyPolicy,
    as_of: date,
    borrow_record_id: str | None = None,
) -> PenaltyQuote:
    """Price a loan.

    Late fees accrue per overdue day at `late_fee_rate * mrp`. Damage and
    loss add a replacement cost on top of any late fee. The reported
    penalty type is the most severe one that applies.
    """
    if overdue_days < 0:
        raise ValueError("overdue_days cannot be negative")

    daily_rate = policy.daily_rate(mrp)
    late_amount = to_money(daily_rate * overdue_days) if daily_rate is not None else ZERO

    if lost:
        penalty_type = PenaltyType.LOST
    elif damaged:
        penalty_type = PenaltyType.DAMAGE
    elif late_amount > 0:
        penalty_type = PenaltyType.LATE
    else:
        penalty_type = PenaltyType.NONE

    replacement_amount = policy.replacement_cost(penalty_type, mrp)
    total = to_money(late_amount + replacement_amount)
    if total == 0:
        penalty_type = PenaltyType.NONE

    return PenaltyQuote(
        borrow_record_id=borrow_record_id,
        as_of=as_of,
        overdue_days=overdue_days,
        mrp=mrp,
        daily_rate=daily_rate,
        late_amount=late_amount,
        replacement_amount=replacement_amount,
        total=total,
        penalty_type=penalty_type,
    )


class PenaltyAction(str, Enum):
    """Audit trail entry kinds."""

    PAYMENT = "payment"
    MANUAL_SETTLEMENT = "manual_settlement"
    WAIVER = "waiver"


class PenaltyTransaction(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    borrow_record_id: str
    action: PenaltyAction
    amount: Decimal
    balance_after: Decimal
    performed_by: str | None = None
    idempotency_key: str | None = None
    created_at: datetime


class PenaltySummary(BaseModel):
    """Penalty state of one record, as returned by the settlement operations."""

    borrow_record_id: str
    student_id: str
    book_id: str
    penalty_amount: Decimal
    amount_paid: Decimal
    outstanding_balance: Decimal
    penalty_type: PenaltyType
    penalty_status: PenaltyStatus
    settlement_method: str | None = None
    replayed: bool = Field(
        default=False, description="True when a repeated idempotency key applied nothing"
    )


class ReconciliationReport(BaseModel):
    """Outcome of one reconciliation sweep."""

    started_at: datetime
    finished_at: datetime | None = None
    scanned: int = 0
    updated: int = 0
    unchanged: int = 0
    conflicts: int = 0
    skipped: list[str] = Field(
        default_factory=list,
        description="Records left alone after a conflict or because they settled mid-sweep",
    )
