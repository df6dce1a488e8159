"""Waitlist Resources

Resources:
- circulation://waitlists - Every non-empty queue
- circulation://waitlists/{book_id} - One book's queue, best-ranked first
"""

import logging
from typing import Any

from fastmcp.exceptions import ResourceError

from ..database.errors import NotFoundError
from ..database.session import session_scope
from ..database.waitlist_repository import WaitlistRepository
from ..observability.decorators import trace_resource

logger = logging.getLogger(__name__)


@trace_resource("waitlists")
async def list_waitlists_handler() -> dict[str, Any]:
    try:
        with session_scope() as session:
            queues = WaitlistRepository(session).list_all_queues()
            return {
                "queues": [queue.model_dump(mode="json") for queue in queues],
                "total": len(queues),
            }
    except Exception as e:
        logger.exception("Error in waitlists resource")
        raise ResourceError(f"Failed to retrieve waitlists: {e!s}") from e


@trace_resource("waitlist_detail")
async def get_waitlist_handler(book_id: str) -> dict[str, Any]:
    """Positions and estimated waits reflect the last recompute (join, leave, promotion or nightly sweep)."""
    try:
        with session_scope() as session:
            queue = WaitlistRepository(session).get_queue(book_id)
            return queue.model_dump(mode="json")
    except NotFoundError as e:
        raise ResourceError(f"Book not found: {book_id}") from e
    except Exception as e:
        logger.exception("Error in waitlists/{book_id} resource")
        raise ResourceError(f"Failed to retrieve waitlist: {e!s}") from e


waitlist_resources: list[dict[str, Any]] = [
    {
        "uri": "circulation://waitlists",
        "name": "All Waitlists",
        "description": "Every book with students waiting, each queue in priority order.",
        "mime_type": "application/json",
        "handler": list_waitlists_handler,
    },
    {
        "uri_template": "circulation://waitlists/{book_id}",
        "name": "Book Waitlist",
        "description": (
            "The waitlist for one book: queue position, priority score and estimated "
            "wait for every waiting student."
        ),
        "mime_type": "application/json",
        "handler": get_waitlist_handler,
    },
]
