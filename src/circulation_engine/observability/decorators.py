"""Decorators for tracing MCP tools and resources."""

import functools
from collections.abc import Callable
from datetime import datetime
from typing import Any

import logfire


def trace_tool(tool_name: str):
    """Decorator to trace a tool handler that takes an `arguments` dict."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(arguments: dict[str, Any], *args, **kwargs):
            with logfire.span(
                f"tool.execution.{tool_name}",
                tool_name=tool_name,
                tool_category=_categorize_tool(tool_name),
            ) as span:
                start_time = datetime.now()
                _add_attributes(span, "input", arguments or {})

                try:
                    result = await func(arguments, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("tool.success", False)
                    span.set_attribute("tool.error", str(e))
                    raise

                span.set_attribute("tool.success", not result.get("isError", False))
                span.set_attribute(
                    "tool.duration_ms", (datetime.now() - start_time).total_seconds() * 1000
                )
                if result.get("isError"):
                    span.set_attribute("tool.error_code", result.get("error", {}).get("code", ""))
                return result

        return wrapper

    return decorator


def trace_resource(resource_type: str):
    """Lightweight decorator for resource reads."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            with logfire.span(
                f"resource.read.{resource_type}",
                resource_type=resource_type,
            ) as span:
                result = await func(*args, **kwargs)

                if isinstance(result, dict) and "total" in result:
                    span.set_attribute("result.total", result["total"])

                return result

        return wrapper

    return decorator


def _categorize_tool(tool_name: str) -> str:
    if "penalty" in tool_name or "fine" in tool_name or "reconcile" in tool_name:
        return "penalty"
    if "waitlist" in tool_name:
        return "waitlist"
    if "request" in tool_name:
        return "workflow"
    if "issue" in tool_name or "return" in tool_name:
        return "circulation"
    return "general"


def _add_attributes(span, prefix: str, data: dict):
    """Copy scalar inputs onto the span."""
    for key, value in data.items():
        if isinstance(value, str | int | float | bool):
            span.set_attribute(f"{prefix}.{key}", value)
