"""Issue Request Tools - The Approval Workflow

Tools:
- create_issue_request: A member asks for a copy
- approve_request: Approve one request and issue the copy
- reject_request: Reject one request with a reason
- bulk_approve_requests: Approve a list of requests in the given order
"""

import logging
from datetime import date
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..database.errors import RepositoryException
from ..database.request_repository import IssueRequestRepository
from ..database.session import session_scope
from ..observability.decorators import trace_tool
from ..observability.metrics import record_bulk_approval
from .responses import (
    format_success_response,
    invalid_arguments,
    log_operation,
    repository_error,
    unexpected_error,
)

logger = logging.getLogger(__name__)


class CreateIssueRequestInput(BaseModel):
    student_id: str = Field(..., min_length=1)
    book_id: str = Field(..., min_length=1)


class ApproveRequestInput(BaseModel):
    request_id: str = Field(..., min_length=1)
    due_date: date | None = Field(default=None, description="Overrides the default loan period")
    processed_by: str | None = Field(default=None, max_length=100)


class RejectRequestInput(BaseModel):
    """The reason is checked by the engine so a blank one reports ReasonRequired."""

    request_id: str = Field(..., min_length=1)
    reason: str = Field(default="", description="Why the request was turned down", max_length=500)
    processed_by: str | None = Field(default=None, max_length=100)


class BulkApproveInput(BaseModel):
    request_ids: list[str] = Field(
        ...,
        description="Requests to approve, processed in this order",
        max_length=100,
    )
    processed_by: str | None = Field(default=None, max_length=100)

    @field_validator("request_ids")
    @classmethod
    def drop_repeats(cls, v: list[str]) -> list[str]:
        """Keep the first occurrence of each id."""
        return list(dict.fromkeys(v))


async def create_issue_request_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = CreateIssueRequestInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("create_issue_request", e)

    try:
        with session_scope() as session:
            request = IssueRequestRepository(session).create_request(
                params.student_id, params.book_id
            )
    except RepositoryException as e:
        return repository_error("create_issue_request", e)
    except Exception as e:
        return unexpected_error("create_issue_request", e)

    return format_success_response(
        f"Request '{request.id}' filed for book '{request.book_id}'. Awaiting approval.",
        request=request,
    )


async def approve_request_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Approve a request. An OutOfStock failure leaves it PENDING for a later retry."""
    try:
        params = ApproveRequestInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("approve_request", e)

    try:
        with session_scope() as session:
            request = IssueRequestRepository(session).approve(
                params.request_id, due_date=params.due_date, processed_by=params.processed_by
            )
    except RepositoryException as e:
        return repository_error("approve_request", e)
    except Exception as e:
        return unexpected_error("approve_request", e)

    log_operation(
        "approve_request_success",
        request_id=request.id,
        borrow_record_id=request.borrow_record_id,
        processed_by=params.processed_by,
    )
    return format_success_response(
        f"Request '{request.id}' approved; loan '{request.borrow_record_id}' opened.",
        request=request,
    )


async def reject_request_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = RejectRequestInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("reject_request", e)

    try:
        with session_scope() as session:
            request = IssueRequestRepository(session).reject(
                params.request_id, params.reason, processed_by=params.processed_by
            )
    except RepositoryException as e:
        return repository_error("reject_request", e)
    except Exception as e:
        return unexpected_error("reject_request", e)

    return format_success_response(
        f"Request '{request.id}' rejected: {request.rejection_reason}", request=request
    )


async def bulk_approve_requests_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Approve many requests; failures are reported per item, never abort the batch."""
    try:
        params = BulkApproveInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("bulk_approve_requests", e)

    try:
        with session_scope() as session:
            result = IssueRequestRepository(session).bulk_approve(
                params.request_ids, processed_by=params.processed_by
            )
    except RepositoryException as e:
        return repository_error("bulk_approve_requests", e)
    except Exception as e:
        return unexpected_error("bulk_approve_requests", e)

    record_bulk_approval(result.approved_count, result.failed_count)
    message = f"Approved {result.approved_count} of {len(params.request_ids)} requests."
    if result.failed_requests:
        message += " Not approved: " + ", ".join(
            f"{item.id} ({item.reason})" for item in result.failed_requests
        )
    return format_success_response(
        message,
        approved_count=result.approved_count,
        succeeded=result.succeeded,
        failed_requests=result.failed_requests,
    )


create_issue_request = {
    "name": "create_issue_request",
    "description": (
        "File a request for a copy of a catalog title. Normal members are limited to a "
        "few requests per month; premium members are not."
    ),
    "inputSchema": CreateIssueRequestInput.model_json_schema(),
    "handler": trace_tool("create_issue_request")(create_issue_request_handler),
}

approve_request = {
    "name": "approve_request",
    "description": (
        "Approve a pending issue request and lend the copy. If no copy is free the "
        "request stays pending and OutOfStock is reported."
    ),
    "inputSchema": ApproveRequestInput.model_json_schema(),
    "handler": trace_tool("approve_request")(approve_request_handler),
}

reject_request = {
    "name": "reject_request",
    "description": "Reject a pending issue request. A reason is required.",
    "inputSchema": RejectRequestInput.model_json_schema(),
    "handler": trace_tool("reject_request")(reject_request_handler),
}

bulk_approve_requests = {
    "name": "bulk_approve_requests",
    "description": (
        "Approve several pending requests in the order given. Each item succeeds or "
        "fails on its own; failures are listed with their error code."
    ),
    "inputSchema": BulkApproveInput.model_json_schema(),
    "handler": trace_tool("bulk_approve_requests")(bulk_approve_requests_handler),
}
