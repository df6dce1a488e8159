"""
MCP Tools for the Circulation Engine.

Tools are the state-changing operations: loans, returns, penalty settlement,
the request workflow, waitlists and acquisitions. Each tool is a dictionary
with a name, description, JSON input schema and an async handler.
"""

from .acquisitions import (
    approve_acquisition_request,
    create_acquisition_request,
    reject_acquisition_request,
)
from .circulation import issue_book, return_book
from .penalties import (
    compute_penalty,
    mark_penalty_paid,
    pay_penalty,
    preview_fine,
    reconcile_penalties,
    waive_penalty,
)
from .requests import (
    approve_request,
    bulk_approve_requests,
    create_issue_request,
    reject_request,
)
from .waitlist import join_waitlist, leave_waitlist

# Export all tools for server registration
all_tools = [
    issue_book,
    return_book,
    create_issue_request,
    approve_request,
    reject_request,
    bulk_approve_requests,
    preview_fine,
    compute_penalty,
    reconcile_penalties,
    pay_penalty,
    waive_penalty,
    mark_penalty_paid,
    join_waitlist,
    leave_waitlist,
    create_acquisition_request,
    approve_acquisition_request,
    reject_acquisition_request,
]

__all__ = [
    "all_tools",
    "approve_acquisition_request",
    "approve_request",
    "bulk_approve_requests",
    "compute_penalty",
    "create_acquisition_request",
    "create_issue_request",
    "issue_book",
    "join_waitlist",
    "leave_waitlist",
    "mark_penalty_paid",
    "pay_penalty",
    "preview_fine",
    "reconcile_penalties",
    "reject_acquisition_request",
    "reject_request",
    "return_book",
    "waive_penalty",
]
