"""Acquisition Tools - Requests to Stock New Titles

Tools:
- create_acquisition_request: A member asks the library to buy a title
- approve_acquisition_request: Stock the title (one copy) and offer it to its waitlist
- reject_acquisition_request: Turn the request down with a reason
"""

import logging
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ..database.acquisition_repository import AcquisitionCreateSchema, AcquisitionRepository
from ..database.errors import RepositoryException
from ..database.session import session_scope
from ..observability.decorators import trace_tool
from .responses import format_success_response, invalid_arguments, repository_error, unexpected_error

logger = logging.getLogger(__name__)


class ApproveAcquisitionInput(BaseModel):
    request_id: str = Field(..., min_length=1)
    reviewed_by: str | None = Field(default=None, max_length=100)
    mrp: Decimal | None = Field(
        default=None, ge=0, description="List price of the new catalog entry, if known"
    )


class RejectAcquisitionInput(BaseModel):
    request_id: str = Field(..., min_length=1)
    reason: str = Field(default="", max_length=500)
    reviewed_by: str | None = Field(default=None, max_length=100)


async def create_acquisition_request_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = AcquisitionCreateSchema.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("create_acquisition_request", e)

    try:
        with session_scope() as session:
            request = AcquisitionRepository(session).create_acquisition(params)
    except RepositoryException as e:
        return repository_error("create_acquisition_request", e)
    except Exception as e:
        return unexpected_error("create_acquisition_request", e)

    return format_success_response(
        f"Acquisition request '{request.id}' filed for '{request.book_name}' by {request.author}.",
        request=request,
    )


async def approve_acquisition_request_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = ApproveAcquisitionInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("approve_acquisition_request", e)

    try:
        with session_scope() as session:
            request = AcquisitionRepository(session).approve_acquisition(
                params.request_id, reviewed_by=params.reviewed_by, mrp=params.mrp
            )
    except RepositoryException as e:
        return repository_error("approve_acquisition_request", e)
    except Exception as e:
        return unexpected_error("approve_acquisition_request", e)

    return format_success_response(
        f"Acquisition '{request.id}' approved; '{request.book_name}' is stocked as "
        f"'{request.book_id}'.",
        request=request,
    )


async def reject_acquisition_request_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = RejectAcquisitionInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("reject_acquisition_request", e)

    try:
        with session_scope() as session:
            request = AcquisitionRepository(session).reject_acquisition(
                params.request_id, params.reason, reviewed_by=params.reviewed_by
            )
    except RepositoryException as e:
        return repository_error("reject_acquisition_request", e)
    except Exception as e:
        return unexpected_error("reject_acquisition_request", e)

    return format_success_response(
        f"Acquisition '{request.id}' rejected: {request.rejection_reason}", request=request
    )


create_acquisition_request = {
    "name": "create_acquisition_request",
    "description": "Ask the library to stock a title it does not already hold.",
    "inputSchema": AcquisitionCreateSchema.model_json_schema(),
    "handler": trace_tool("create_acquisition_request")(create_acquisition_request_handler),
}

approve_acquisition_request = {
    "name": "approve_acquisition_request",
    "description": (
        "Approve an acquisition request. Adds one copy to the catalog and issues it to "
        "the top of that title's waitlist if anyone is waiting."
    ),
    "inputSchema": ApproveAcquisitionInput.model_json_schema(),
    "handler": trace_tool("approve_acquisition_request")(approve_acquisition_request_handler),
}

reject_acquisition_request = {
    "name": "reject_acquisition_request",
    "description": "Reject an acquisition request. A reason is required.",
    "inputSchema": RejectAcquisitionInput.model_json_schema(),
    "handler": trace_tool("reject_acquisition_request")(reject_acquisition_request_handler),
}
