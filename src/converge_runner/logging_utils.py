"""Configure logging and summarize run outcomes."""

import json
import sys
from typing import Any, Optional

from loguru import logger

from .errors import (
    ConfigurationError,
    DependencyCycleError,
    PermanentTaskError,
    StagnationError,
    UnknownDependencyError,
)


def configure_logging(level: str = "INFO", sink: Any = None) -> None:
    """Configure the loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sink or sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )


def summarize_run(result: Any) -> dict[str, Any]:
    """Render a compact, JSON-friendly summary of a run result.

    Args:
        result: A ``RunResult`` (or None when the run never started).

    Returns:
        A dictionary suitable for logging or serialization.
    """
    if result is None:
        return {"run": None}

    states = getattr(result, "states", {}) or {}
    retried = sorted(name for name, s in states.items() if getattr(s, "attempts", 0) > 1)
    return {
        "succeeded": bool(getattr(result, "succeeded", False)),
        "passes": getattr(result, "pass_count", 0),
        "done_n": len(getattr(result, "done", []) or []),
        "pending": list(getattr(result, "pending", []) or []),
        "failed": list(getattr(result, "failed", []) or []),
        "retried": retried,
    }


def summarize_error(exc: Optional[BaseException]) -> dict[str, Any]:
    """Describe a terminal run error for logs and CLI output."""
    if exc is None:
        return {"error": None}

    d: dict[str, Any] = {"error": exc.__class__.__name__, "message": str(exc)}
    if isinstance(exc, DependencyCycleError):
        d["category"] = "configuration"
        d["cycle"] = list(exc.cycle)
    elif isinstance(exc, UnknownDependencyError):
        d["category"] = "configuration"
        d["task"] = exc.task_name
        d["dependency"] = exc.dependency
    elif isinstance(exc, ConfigurationError):
        d["category"] = "configuration"
    elif isinstance(exc, PermanentTaskError):
        d["category"] = "permanent"
        d["task"] = exc.task_name
        if exc.cause is not None:
            d["cause"] = f"{exc.cause.__class__.__name__}: {exc.cause}"
    elif isinstance(exc, StagnationError):
        d["category"] = "stagnation"
        d["passes"] = exc.passes
        d["unresolved"] = {name: exc.unresolved[name].to_dict() for name in sorted(exc.unresolved)}
    else:
        d["category"] = "unexpected"
    return d


def pretty(obj: Any, *, indent: int = 2) -> str:
    """Serialize an object as JSON for readable logs.

    Args:
        obj: Object to serialize.
        indent: Indentation level for JSON output.

    Returns:
        A JSON string when possible; otherwise `str(obj)`.
    """
    try:
        return json.dumps(obj, indent=indent, default=str)
    except (TypeError, ValueError):
        return str(obj)
