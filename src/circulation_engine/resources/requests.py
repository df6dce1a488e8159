"""Issue Request Resources

Resources:
- circulation://requests/pending - Requests awaiting a decision, oldest first
"""

import logging
from typing import Any

from fastmcp.exceptions import ResourceError

from ..database.repository import PaginationParams
from ..database.request_repository import IssueRequestRepository
from ..database.session import session_scope
from ..models.request import RequestStatus
from ..observability.decorators import trace_resource

logger = logging.getLogger(__name__)


@trace_resource("requests_pending")
async def list_pending_requests_handler() -> dict[str, Any]:
    """Oldest first, which is the order bulk approval should use."""
    try:
        with session_scope() as session:
            result = IssueRequestRepository(session).list_requests(
                status=RequestStatus.PENDING,
                pagination=PaginationParams(page=1, page_size=100),
            )
            return result.model_dump(mode="json")
    except Exception as e:
        logger.exception("Error in requests/pending resource")
        raise ResourceError(f"Failed to retrieve pending requests: {e!s}") from e


request_resources: list[dict[str, Any]] = [
    {
        "uri": "circulation://requests/pending",
        "name": "Pending Issue Requests",
        "description": (
            "Issue requests awaiting approval or rejection, oldest first. Pass their ids "
            "in this order to bulk_approve_requests."
        ),
        "mime_type": "application/json",
        "handler": list_pending_requests_handler,
    },
]
