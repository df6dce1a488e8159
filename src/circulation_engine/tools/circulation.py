"""Circulation Tools - Loans and Returns

Tools:
- issue_book: Lend a free copy directly to a member
- return_book: Close a loan, price any penalty and hand the copy to the waitlist
"""

import logging
from datetime import date
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..clock import get_clock
from ..database.circulation_repository import CirculationRepository
from ..database.errors import RepositoryException
from ..database.session import session_scope
from ..observability.decorators import trace_tool
from ..observability.metrics import record_circulation_event
from .responses import (
    format_success_response,
    invalid_arguments,
    log_operation,
    repository_error,
    unexpected_error,
)

logger = logging.getLogger(__name__)


class IssueBookInput(BaseModel):
    """Input schema for direct issuance."""

    book_id: str = Field(..., min_length=1, description="Catalog id of the title to lend")
    student_id: str = Field(..., min_length=1, description="Member borrowing the copy")
    due_date: date | None = Field(
        default=None,
        description="Optional custom due date. Defaults to the member's loan period",
        examples=["2026-11-02"],
    )

    @field_validator("due_date")
    @classmethod
    def validate_due_date(cls, v: date | None) -> date | None:
        """Ensure due date is not in the past."""
        if v is not None and v < get_clock().today():
            raise ValueError("Due date cannot be in the past")
        return v


async def issue_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Lend a copy if one is free right now.

    Client calls: tool.call("issue_book", {"book_id": "...", "student_id": "..."})
    """
    try:
        params = IssueBookInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("issue_book", e)

    try:
        with session_scope() as session:
            record = CirculationRepository(session).issue(
                params.book_id, params.student_id, params.due_date
            )
    except RepositoryException as e:
        record_circulation_event("issue", e.code)
        return repository_error("issue_book", e)
    except Exception as e:
        return unexpected_error("issue_book", e)

    record_circulation_event("issue", "success")
    log_operation("issue_book_success", borrow_record_id=record.id, due_date=record.due_date)
    return format_success_response(
        f"Issued book '{record.book_id}' to '{record.student_id}'. "
        f"Due date: {record.due_date.strftime('%B %d, %Y')}",
        borrow_record=record,
    )


class ReturnBookInput(BaseModel):
    """Input schema for returns. `lost` takes precedence over `damaged`."""

    borrow_record_id: str = Field(..., min_length=1, description="Loan being closed")
    damaged: bool = Field(default=False, description="The copy came back damaged")
    lost: bool = Field(default=False, description="The copy was reported lost")


async def return_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Process a return.

    The response carries the closed record and, when the copy went straight
    to a waiting student, the loan that was opened for them.
    """
    try:
        params = ReturnBookInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("return_book", e)

    try:
        with session_scope() as session:
            outcome = CirculationRepository(session).process_return(
                params.borrow_record_id, damaged=params.damaged, lost=params.lost
            )
    except RepositoryException as e:
        record_circulation_event("return", e.code)
        return repository_error("return_book", e)
    except Exception as e:
        return unexpected_error("return_book", e)

    record = outcome.record
    record_circulation_event("return", record.status.value)

    message = f"Closed loan '{record.id}' as {record.status.value}."
    if record.penalty_amount > 0:
        message += f" Penalty assessed: {record.penalty_amount} ({record.penalty_type.value})."
    else:
        message += " No penalty."
    if outcome.promoted_student_id:
        message += f" The copy was issued to waitlisted member '{outcome.promoted_student_id}'."

    return format_success_response(
        message,
        borrow_record=record,
        promoted_student_id=outcome.promoted_student_id,
        issued_record=outcome.issued_record,
    )


issue_book = {
    "name": "issue_book",
    "description": (
        "Lend a copy of a book to a member. Fails with OutOfStock when no copy is free "
        "and with MemberNotEligible when the member is not approved."
    ),
    "inputSchema": IssueBookInput.model_json_schema(),
    "handler": trace_tool("issue_book")(issue_book_handler),
}

return_book = {
    "name": "return_book",
    "description": (
        "Close a loan as returned, late, damaged or lost. Prices the penalty, restocks "
        "the copy (unless lost) and issues it to the top of the waitlist if anyone is waiting."
    ),
    "inputSchema": ReturnBookInput.model_json_schema(),
    "handler": trace_tool("return_book")(return_book_handler),
}
