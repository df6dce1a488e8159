"""Penalty Resources

Resources:
- circulation://penalties/pending - Loans with an unpaid, unwaived penalty
"""

import logging
from typing import Any

from fastmcp.exceptions import ResourceError

from ..database.penalty_repository import PenaltyRepository
from ..database.repository import PaginationParams
from ..database.session import session_scope
from ..observability.decorators import trace_resource

logger = logging.getLogger(__name__)


@trace_resource("penalties_pending")
async def list_pending_penalties_handler() -> dict[str, Any]:
    """Largest outstanding balance first."""
    try:
        with session_scope() as session:
            result = PenaltyRepository(session).list_pending_penalties(
                pagination=PaginationParams(page=1, page_size=100)
            )
            return result.model_dump(mode="json")
    except Exception as e:
        logger.exception("Error in penalties/pending resource")
        raise ResourceError(f"Failed to retrieve pending penalties: {e!s}") from e


penalty_resources: list[dict[str, Any]] = [
    {
        "uri": "circulation://penalties/pending",
        "name": "Pending Penalties",
        "description": (
            "Loans carrying a penalty that is neither paid nor waived, with the amount "
            "assessed, paid so far and still outstanding."
        ),
        "mime_type": "application/json",
        "handler": list_pending_penalties_handler,
    },
]
