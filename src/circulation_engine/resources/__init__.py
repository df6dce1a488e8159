"""Circulation Engine MCP Resources Package

Resources are the read-only side of the engine: pending penalties, pending
requests, waitlists and overdue loans. Anything that changes state is a tool.
"""

from .borrows import borrow_resources
from .penalties import penalty_resources
from .requests import request_resources
from .waitlists import waitlist_resources

# Combine all resources
all_resources = penalty_resources + request_resources + waitlist_resources + borrow_resources

__all__ = [
    "all_resources",
    "borrow_resources",
    "penalty_resources",
    "request_resources",
    "waitlist_resources",
]
