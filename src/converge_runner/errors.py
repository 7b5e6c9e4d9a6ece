"""Error taxonomy for a convergence run.

Only three kinds of error end a run: configuration errors (reported before any
task runs), permanent task errors and stagnation.  Transient errors are
swallowed by the run loop and retried on a later pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence


class ConvergeError(Exception):
    """Base class for every error raised by the engine."""


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------

class ConfigurationError(ConvergeError):
    """The task collection cannot be run as declared."""


class DependencyCycleError(ConfigurationError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"Circular dependency detected: {' -> '.join(self.cycle)}")

    @property
    def members(self) -> set[str]:
        return set(self.cycle)


class UnknownDependencyError(ConfigurationError):
    """A task depends on a name that is not part of the run."""

    def __init__(self, task_name: str, dependency: str) -> None:
        self.task_name = task_name
        self.dependency = dependency
        super().__init__(f"Task '{task_name}' depends on unknown task '{dependency}'")


class ManifestError(ConfigurationError):
    """A task manifest could not be loaded or validated."""


# ---------------------------------------------------------------------------
# Task errors
# ---------------------------------------------------------------------------

class TransientTaskError(ConvergeError):
    """Raised by a task that should be retried on a later pass.

    Typical causes are remote resources that are not visible yet or not yet
    in an attachable state.
    """

    transient = True


class CommandError(ConvergeError):
    """A command run by a target exited non-zero."""

    transient = True

    def __init__(self, args: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr
        tail = stderr.strip()
        if len(tail) > 240:
            tail = tail[-240:]
        message = f"Command {self.args_list!r} exited with code {returncode}"
        if tail:
            message += f": {tail}"
        super().__init__(message)


class PermanentTaskError(ConvergeError):
    """A task failed in a way that retrying will not fix; aborts the run."""

    transient = False

    def __init__(self, task_name: str, cause: Optional[BaseException] = None, message: str = "") -> None:
        self.task_name = task_name
        self.cause = cause
        detail = message or (f"{type(cause).__name__}: {cause}" if cause is not None else "permanent failure")
        super().__init__(f"Task '{task_name}' failed permanently: {detail}")


@dataclass
class StalledTask:
    """Why one task was still pending when the no-progress budget ran out."""

    name: str
    blocked_on: list[str] = field(default_factory=list)
    attempts: int = 0
    last_error: Optional[str] = None
    last_error_type: Optional[str] = None

    @property
    def reason(self) -> str:
        return "blocked" if self.blocked_on else "failing"

    def describe(self) -> str:
        if self.blocked_on:
            return f"{self.name}: blocked on {', '.join(self.blocked_on)}"
        return f"{self.name}: failing after {self.attempts} attempt(s): {self.last_error or 'unknown error'}"

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "reason": self.reason,
            "blocked_on": list(self.blocked_on),
            "attempts": self.attempts,
            "last_error": self.last_error,
            "last_error_type": self.last_error_type,
        }


class StagnationError(ConvergeError):
    """The no-progress budget was exhausted with tasks still pending."""

    def __init__(self, unresolved: dict[str, StalledTask], passes: int = 0) -> None:
        self.unresolved = dict(unresolved)
        self.passes = passes
        lines = [self.unresolved[name].describe() for name in sorted(self.unresolved)]
        super().__init__(
            f"Not making progress running tasks; {len(lines)} task(s) unresolved:\n  " + "\n  ".join(lines)
        )

    @property
    def blocked(self) -> list[str]:
        return sorted(n for n, s in self.unresolved.items() if s.blocked_on)

    @property
    def failing(self) -> list[str]:
        return sorted(n for n, s in self.unresolved.items() if not s.blocked_on)


def is_transient(exc: BaseException) -> bool:
    """Classify an exception raised by a task's ``run``."""
    if isinstance(exc, PermanentTaskError):
        return False
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    return bool(getattr(exc, "transient", False))
