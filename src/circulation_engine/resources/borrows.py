"""Borrow Record Resources

Resources:
- circulation://borrows/overdue - Active loans past their due date
- circulation://borrows/{record_id} - One loan with its penalty audit trail
"""

import logging
from typing import Any

from fastmcp.exceptions import ResourceError

from ..database.circulation_repository import CirculationRepository
from ..database.errors import NotFoundError
from ..database.penalty_repository import PenaltyRepository
from ..database.repository import PaginationParams
from ..database.session import session_scope
from ..observability.decorators import trace_resource

logger = logging.getLogger(__name__)


@trace_resource("borrows_overdue")
async def list_overdue_handler() -> dict[str, Any]:
    try:
        with session_scope() as session:
            result = CirculationRepository(session).list_overdue(
                PaginationParams(page=1, page_size=100)
            )
            return result.model_dump(mode="json")
    except Exception as e:
        logger.exception("Error in borrows/overdue resource")
        raise ResourceError(f"Failed to retrieve overdue loans: {e!s}") from e


@trace_resource("borrow_detail")
async def get_borrow_record_handler(record_id: str) -> dict[str, Any]:
    """The record, today's fine quote and every payment, settlement or waiver."""
    try:
        with session_scope() as session:
            record = CirculationRepository(session).get_borrow_record(record_id)
            penalties = PenaltyRepository(session)
            quote = penalties.preview_fine(record_id)
            history = penalties.list_penalty_history(record_id)
            return {
                "record": record.model_dump(mode="json"),
                "fine_preview": quote.model_dump(mode="json"),
                "penalty_history": [tx.model_dump(mode="json") for tx in history],
            }
    except NotFoundError as e:
        raise ResourceError(f"Borrow record not found: {record_id}") from e
    except Exception as e:
        logger.exception("Error in borrows/{record_id} resource")
        raise ResourceError(f"Failed to retrieve borrow record: {e!s}") from e


borrow_resources: list[dict[str, Any]] = [
    {
        "uri": "circulation://borrows/overdue",
        "name": "Overdue Loans",
        "description": "Active loans whose due date has passed, most recent first.",
        "mime_type": "application/json",
        "handler": list_overdue_handler,
    },
    {
        "uri_template": "circulation://borrows/{record_id}",
        "name": "Borrow Record",
        "description": (
            "One loan with its current penalty, a fine quote as of today and the "
            "penalty audit trail."
        ),
        "mime_type": "application/json",
        "handler": get_borrow_record_handler,
    },
]
