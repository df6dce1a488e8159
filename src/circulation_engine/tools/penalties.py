"""Penalty Tools - Assessment and Settlement

Tools:
- preview_fine: Quote today's fine without writing anything
- compute_penalty: Recompute and store the fine for one loan
- reconcile_penalties: Refresh the fine on every overdue active loan
- pay_penalty: Record a (possibly partial) payment
- waive_penalty: Forgive the outstanding balance
- mark_penalty_paid: Close a pending penalty administratively
"""

import logging
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ..database.errors import RepositoryException
from ..database.penalty_repository import PenaltyRepository
from ..database.session import session_scope
from ..observability.decorators import trace_tool
from ..observability.metrics import record_reconciliation, record_settlement
from .responses import (
    format_success_response,
    invalid_arguments,
    log_operation,
    repository_error,
    unexpected_error,
)

logger = logging.getLogger(__name__)


class BorrowRecordInput(BaseModel):
    borrow_record_id: str = Field(..., min_length=1, description="Loan whose penalty is addressed")


class SettlementInput(BorrowRecordInput):
    performed_by: str | None = Field(
        default=None, description="Staff member recording the action", max_length=100
    )


class PayPenaltyInput(SettlementInput):
    """Amounts are validated by the engine so that a bad amount reports InvalidAmount."""

    amount: Decimal = Field(..., description="Amount paid, in currency units", examples=["50.00"])
    idempotency_key: str | None = Field(
        default=None,
        description="Client-chosen key; repeating a payment with the same key has no effect",
        max_length=100,
    )


class ReconcileInput(BaseModel):
    """Reconciliation takes no arguments."""


async def preview_fine_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Show what the loan would be charged if priced today."""
    try:
        params = BorrowRecordInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("preview_fine", e)

    try:
        with session_scope() as session:
            quote = PenaltyRepository(session).preview_fine(params.borrow_record_id)
    except RepositoryException as e:
        return repository_error("preview_fine", e)
    except Exception as e:
        return unexpected_error("preview_fine", e)

    if quote.mrp_known:
        message = (
            f"Loan '{params.borrow_record_id}' is {quote.overdue_days} days overdue; "
            f"fine as of {quote.as_of.isoformat()} would be {quote.total}."
        )
    else:
        message = (
            f"Loan '{params.borrow_record_id}' has no recorded MRP, so no late fee accrues; "
            f"fine as of {quote.as_of.isoformat()} would be {quote.total}."
        )
    return format_success_response(message, quote=quote)


async def compute_penalty_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = BorrowRecordInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("compute_penalty", e)

    try:
        with session_scope() as session:
            record = PenaltyRepository(session).compute_penalty(params.borrow_record_id)
    except RepositoryException as e:
        return repository_error("compute_penalty", e)
    except Exception as e:
        return unexpected_error("compute_penalty", e)

    return format_success_response(
        f"Penalty on '{record.id}' is {record.penalty_amount} "
        f"({record.penalty_type.value}, {record.penalty_status.value}).",
        borrow_record=record,
    )


async def reconcile_penalties_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Run the nightly sweep on demand."""
    try:
        ReconcileInput.model_validate(arguments or {})
    except ValidationError as e:
        return invalid_arguments("reconcile_penalties", e)

    try:
        with session_scope() as session:
            report = PenaltyRepository(session).reconcile_penalties()
    except RepositoryException as e:
        return repository_error("reconcile_penalties", e)
    except Exception as e:
        return unexpected_error("reconcile_penalties", e)

    record_reconciliation(report.updated, report.unchanged, len(report.skipped))
    return format_success_response(
        f"Reconciled {report.scanned} overdue loans: {report.updated} updated, "
        f"{report.unchanged} unchanged, {len(report.skipped)} skipped.",
        report=report,
    )


async def pay_penalty_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = PayPenaltyInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("pay_penalty", e)

    try:
        with session_scope() as session:
            summary = PenaltyRepository(session).pay_penalty(
                params.borrow_record_id,
                params.amount,
                idempotency_key=params.idempotency_key,
                performed_by=params.performed_by,
            )
    except RepositoryException as e:
        return repository_error("pay_penalty", e)
    except Exception as e:
        return unexpected_error("pay_penalty", e)

    if summary.replayed:
        return format_success_response(
            f"Payment '{params.idempotency_key}' was already applied to "
            f"'{summary.borrow_record_id}'. Outstanding balance: {summary.outstanding_balance}.",
            penalty=summary,
        )

    record_settlement("payment", params.amount)
    log_operation(
        "pay_penalty_success",
        borrow_record_id=summary.borrow_record_id,
        amount=params.amount,
        outstanding=summary.outstanding_balance,
    )
    if summary.outstanding_balance == 0:
        message = f"Penalty on '{summary.borrow_record_id}' is fully paid."
    else:
        message = (
            f"Recorded payment of {params.amount} on '{summary.borrow_record_id}'. "
            f"Outstanding balance: {summary.outstanding_balance}."
        )
    return format_success_response(message, penalty=summary)


async def waive_penalty_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = SettlementInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("waive_penalty", e)

    try:
        with session_scope() as session:
            summary = PenaltyRepository(session).waive_penalty(
                params.borrow_record_id, performed_by=params.performed_by
            )
    except RepositoryException as e:
        return repository_error("waive_penalty", e)
    except Exception as e:
        return unexpected_error("waive_penalty", e)

    record_settlement("waiver")
    return format_success_response(
        f"Penalty on '{summary.borrow_record_id}' waived.", penalty=summary
    )


async def mark_penalty_paid_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = SettlementInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("mark_penalty_paid", e)

    try:
        with session_scope() as session:
            summary = PenaltyRepository(session).mark_penalty_as_paid(
                params.borrow_record_id, performed_by=params.performed_by
            )
    except RepositoryException as e:
        return repository_error("mark_penalty_paid", e)
    except Exception as e:
        return unexpected_error("mark_penalty_paid", e)

    record_settlement("manual")
    return format_success_response(
        f"Penalty on '{summary.borrow_record_id}' marked as paid.", penalty=summary
    )


preview_fine = {
    "name": "preview_fine",
    "description": (
        "Quote the fine a loan would carry if priced today. Read-only; use it to show "
        "students what they owe before they pay."
    ),
    "inputSchema": BorrowRecordInput.model_json_schema(),
    "handler": trace_tool("preview_fine")(preview_fine_handler),
}

compute_penalty = {
    "name": "compute_penalty",
    "description": "Recompute and store the penalty for one loan. Idempotent within a day.",
    "inputSchema": BorrowRecordInput.model_json_schema(),
    "handler": trace_tool("compute_penalty")(compute_penalty_handler),
}

reconcile_penalties = {
    "name": "reconcile_penalties",
    "description": (
        "Refresh the stored fine on every overdue active loan. Loans changed concurrently "
        "are retried and then skipped for the next sweep."
    ),
    "inputSchema": ReconcileInput.model_json_schema(),
    "handler": trace_tool("reconcile_penalties")(reconcile_penalties_handler),
}

pay_penalty = {
    "name": "pay_penalty",
    "description": (
        "Record a payment against a pending penalty. The amount must be positive and no "
        "more than the outstanding balance."
    ),
    "inputSchema": PayPenaltyInput.model_json_schema(),
    "handler": trace_tool("pay_penalty")(pay_penalty_handler),
}

waive_penalty = {
    "name": "waive_penalty",
    "description": "Forgive the outstanding penalty on a loan. Irreversible.",
    "inputSchema": SettlementInput.model_json_schema(),
    "handler": trace_tool("waive_penalty")(waive_penalty_handler),
}

mark_penalty_paid = {
    "name": "mark_penalty_paid",
    "description": "Close a pending penalty as paid without recording a payment amount.",
    "inputSchema": SettlementInput.model_json_schema(),
    "handler": trace_tool("mark_penalty_paid")(mark_penalty_paid_handler),
}
