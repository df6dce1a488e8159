"""
Circulation Engine Package.

A standalone backend for the circulation and penalty side of a library:
loans and returns, overdue fines and their settlement, issue-request
approval, acquisition requests and waitlist ranking.

Key Components:
- models: Pydantic models and pure policy functions
- database: SQLAlchemy ledger, sessions and repositories
- config: Configuration management with pydantic-settings
- scheduler: Nightly penalty reconciliation
- resources: MCP resources (read-only listings)
- tools: MCP tools (state-changing operations)
"""

__version__ = "0.1.0"

from . import database

__all__ = [
    "__version__",
    "database",
]
