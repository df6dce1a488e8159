"""Waitlist Tools

Tools:
- join_waitlist: Queue for a title with no free copies
- leave_waitlist: Give up a place in the queue
"""

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ..database.errors import RepositoryException
from ..database.session import session_scope
from ..database.waitlist_repository import WaitlistRepository
from ..observability.decorators import trace_tool
from .responses import format_success_response, invalid_arguments, repository_error, unexpected_error

logger = logging.getLogger(__name__)


class WaitlistInput(BaseModel):
    book_id: str = Field(..., min_length=1)
    student_id: str = Field(..., min_length=1)


async def join_waitlist_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = WaitlistInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("join_waitlist", e)

    try:
        with session_scope() as session:
            entry = WaitlistRepository(session).join(params.book_id, params.student_id)
    except RepositoryException as e:
        return repository_error("join_waitlist", e)
    except Exception as e:
        return unexpected_error("join_waitlist", e)

    return format_success_response(
        f"Joined the waitlist for '{entry.book_id}' at position {entry.queue_position} "
        f"(estimated wait: {entry.estimated_wait_days} days).",
        entry=entry,
    )


async def leave_waitlist_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = WaitlistInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_arguments("leave_waitlist", e)

    try:
        with session_scope() as session:
            repo = WaitlistRepository(session)
            repo.leave(params.book_id, params.student_id)
            queue = repo.get_queue(params.book_id)
    except RepositoryException as e:
        return repository_error("leave_waitlist", e)
    except Exception as e:
        return unexpected_error("leave_waitlist", e)

    return format_success_response(
        f"'{params.student_id}' left the waitlist for '{params.book_id}'. "
        f"{queue.size} students still waiting.",
        queue=queue,
    )


join_waitlist = {
    "name": "join_waitlist",
    "description": (
        "Join the waitlist for a book with no free copies. Queue order is by priority "
        "score: time waited, premium membership and return history."
    ),
    "inputSchema": WaitlistInput.model_json_schema(),
    "handler": trace_tool("join_waitlist")(join_waitlist_handler),
}

leave_waitlist = {
    "name": "leave_waitlist",
    "description": "Leave a book's waitlist. Everyone behind moves up.",
    "inputSchema": WaitlistInput.model_json_schema(),
    "handler": trace_tool("leave_waitlist")(leave_waitlist_handler),
}
