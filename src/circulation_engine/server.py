"""Circulation Engine MCP Server - FastMCP Implementation

Exposes the circulation and penalty engine to MCP clients.

Features exposed:
- Resources: Pending penalties, pending requests, waitlists, overdue loans
- Tools: Issue/return, request approval, penalty settlement, waitlists, acquisitions

The nightly penalty reconciliation runs inside the server process for as
long as the server is up.
"""

import asyncio
import logging
import signal
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from typing import Any

from fastmcp import FastMCP

from .config import get_config
from .database.session import get_db_manager
from .observability import initialize_observability
from .resources import all_resources
from .scheduler import ReconciliationJob
from .tools import all_tools

# Initialize logging - stderr for logs, stdout for MCP protocol
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)

logger = logging.getLogger(__name__)

# Load configuration
config = get_config()


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[None]:
    """Prepare the ledger and run the reconciliation job alongside the server."""
    db_manager = get_db_manager()
    db_manager.init_database()
    if not db_manager.verify_connection():
        raise RuntimeError(f"Cannot reach the ledger at {db_manager.database_url}")

    stop_event = asyncio.Event()
    job_task: asyncio.Task | None = None
    if config.enable_reconciliation_job:
        job = ReconciliationJob(db_manager, config)
        job_task = asyncio.create_task(job.run_forever(stop_event))
        logger.info(
            "Penalty reconciliation scheduled daily at %02d:%02d",
            config.reconciliation_hour,
            config.reconciliation_minute,
        )

    try:
        yield
    finally:
        stop_event.set()
        if job_task is not None:
            with suppress(asyncio.CancelledError):
                await job_task
        db_manager.close()
        logger.info("Shutdown complete")


# Create the FastMCP server instance
mcp = FastMCP(
    name=config.engine_name,
    version=config.engine_version,
    instructions=(
        "Circulation & Penalty Engine - lends books, processes returns, prices and "
        "settles fines, runs the issue-request approval workflow and ranks waitlists. "
        "Use resources to inspect pending work and tools to act on it. Error responses "
        "carry a stable error code (OutOfStock, AlreadyProcessed, InvalidAmount, ...)."
    ),
    lifespan=lifespan,
)

# Register all resources with the MCP server
for resource in all_resources:
    uri = resource.get("uri_template", resource.get("uri"))
    if not uri:
        logger.error("Resource missing URI: %s", resource)
        continue

    logger.debug("Registering resource: %s with URI: %s", resource["name"], uri)
    try:
        mcp.resource(
            uri=uri,
            name=resource["name"],
            description=resource["description"],
            mime_type=resource["mime_type"],
        )(resource["handler"])
    except Exception:
        logger.exception("Failed to register resource %s", resource["name"])
        raise

logger.info("Registered %d resources", len(all_resources))

# Register all tools with the MCP server
for tool in all_tools:
    logger.debug("Registering tool: %s", tool["name"])
    try:
        mcp.tool(
            name=tool["name"],
            description=tool["description"],
        )(tool["handler"])
    except Exception:
        logger.exception("Failed to register tool %s", tool["name"])
        raise

logger.info("Registered %d tools", len(all_tools))


def run_server() -> None:
    """Run the MCP server on the configured transport."""
    logger.info(
        "Starting %s v%s on %s transport",
        config.engine_name,
        config.engine_version,
        config.transport,
    )

    if config.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug mode enabled - verbose protocol logging active")
    else:
        logging.getLogger().setLevel(config.log_level)
        logging.getLogger("fastmcp").setLevel(logging.WARNING)

    # Set up signal handlers for graceful shutdown
    def signal_handler(signum: int, _frame: Any) -> None:
        logger.info("Received signal %s, initiating shutdown...", signum)
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        logger.info("MCP Server ready and waiting for connections...")
        if config.transport == "stdio":
            mcp.run(transport="stdio")
        else:
            mcp.run(transport="streamable-http")
    except Exception:
        logger.exception("Fatal error in MCP server")
        sys.exit(1)


def main() -> None:
    """Main entry point for the MCP server."""
    try:
        initialize_observability()

        logger.info("=" * 60)
        logger.info("Circulation Engine MCP Server")
        logger.info("Version: %s", config.engine_version)
        logger.info("Transport: %s", config.transport)
        logger.info("Debug Mode: %s", config.debug)
        logger.info("=" * 60)

        run_server()

    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Failed to start MCP server")
        sys.exit(1)


if __name__ == "__main__":
    main()
