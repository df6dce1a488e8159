"""Response helpers shared by the circulation tools.

Every tool returns either

    {"content": [{"type": "text", "text": ...}], "data": {...}}

or, on failure,

    {"isError": True, "content": [...], "error": {"code": ...}}

where `code` is the stable name of the error (`OutOfStock`, `NotFound`, ...).
"""

import logging
from typing import Any

from pydantic import BaseModel, ValidationError

from ..database.errors import RepositoryException

logger = logging.getLogger(__name__)


def format_error_response(error_type: str, details: str, code: str) -> dict[str, Any]:
    """Format error responses consistently across all tools."""
    return {
        "isError": True,
        "content": [{"type": "text", "text": f"{error_type}: {details}"}],
        "error": {"code": code},
    }


def format_success_response(message: str, **data: Any) -> dict[str, Any]:
    return {
        "content": [{"type": "text", "text": message}],
        "data": {key: _jsonable(value) for key, value in data.items()},
    }


def invalid_arguments(tool_name: str, error: ValidationError) -> dict[str, Any]:
    logger.warning("Invalid %s parameters: %s", tool_name, error)
    return format_error_response("Invalid parameters", str(error), "InvalidArguments")


def repository_error(tool_name: str, error: RepositoryException) -> dict[str, Any]:
    """Map a business-rule failure to a tool error carrying its code."""
    logger.info("%s failed - %s: %s", tool_name, error.code, error)
    log_operation(f"{tool_name}_failed", error_code=error.code, error_details=str(error))
    return format_error_response("Operation failed", str(error), error.code)


def unexpected_error(tool_name: str, error: Exception) -> dict[str, Any]:
    logger.exception("Unexpected error in %s tool", tool_name)
    return format_error_response("Unexpected error", str(error), "InternalError")


def log_operation(operation: str, **kwargs) -> None:
    """Log operation details for audit trail."""
    logger.info(
        "Operation: %s | Details: %s", operation, " | ".join(f"{k}={v}" for k, v in kwargs.items())
    )


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    return value
