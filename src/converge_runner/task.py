"""The Task contract and its per-run state.

A task is a named, idempotent unit of desired state.  Concrete tasks are
usually dataclasses; any field declared with :func:`dependency` is walked by
the default :meth:`Task.dependencies` so task authors never maintain an edge
list by hand.
"""

from __future__ import annotations

import dataclasses
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional

if TYPE_CHECKING:
    from .context import ConvergeContext

_DEPENDENCY_MARKER = "converge_dependency"


def dependency(default: Any = None, **kwargs: Any) -> Any:
    """Declare a dataclass field that refers to other tasks.

    The field may hold a task name, a :class:`Task` object, or a collection of
    either.  References are lookup-only; the referenced task is never owned.
    """
    metadata = dict(kwargs.pop("metadata", None) or {})
    metadata[_DEPENDENCY_MARKER] = True
    if isinstance(default, (list, dict, set)):
        factory = type(default)
        initial = default
        return dataclasses.field(default_factory=lambda: factory(initial), metadata=metadata, **kwargs)
    return dataclasses.field(default=default, metadata=metadata, **kwargs)


class TaskStatus(str, Enum):
    """Engine-side lifecycle of one task within a run."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


_VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.RUNNING},
    TaskStatus.RUNNING: {TaskStatus.DONE, TaskStatus.PENDING, TaskStatus.FAILED},
    TaskStatus.DONE: set(),
    TaskStatus.FAILED: set(),
}


class Task(ABC):
    """Abstract base for units of desired state."""

    #: Names of tasks this one waits on, in addition to ``dependency()`` fields.
    depends_on: Iterable[str] = ()

    def dependencies(self, tasks: Mapping[str, "Task"]) -> set[str]:
        """Return the names of the tasks in ``tasks`` that this task waits on."""
        return declared_dependencies(self, tasks)

    @abstractmethod
    def run(self, ctx: "ConvergeContext") -> None:
        """Converge this task's piece of state through ``ctx.target``.

        Must be safe to call again after an interrupted or failed attempt.
        """
        ...


def _iter_refs(value: Any) -> Iterable[Any]:
    if value is None:
        return
    if isinstance(value, (str, Task)):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from _iter_refs(item)
    elif isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            yield from _iter_refs(item)


def declared_dependencies(task: Task, tasks: Mapping[str, Task]) -> set[str]:
    """Collect dependency names from ``depends_on`` and ``dependency()`` fields.

    Task objects are mapped back to their key by identity; names are returned
    as declared so unknown names can be reported by the caller.  A task never
    depends on itself through its own fields.
    """
    by_identity = {id(t): name for name, t in tasks.items()}
    refs: list[Any] = list(_iter_refs(list(getattr(task, "depends_on", None) or ())))
    if dataclasses.is_dataclass(task):
        for f in dataclasses.fields(task):
            if f.metadata.get(_DEPENDENCY_MARKER):
                refs.extend(_iter_refs(getattr(task, f.name)))

    names: set[str] = set()
    for ref in refs:
        if isinstance(ref, Task):
            if ref is task:
                continue
            name = by_identity.get(id(ref))
            if name is None:
                name = getattr(ref, "name", None) or f"<unregistered {type(ref).__name__}>"
            names.add(name)
        elif ref:
            names.add(str(ref))
    return names


# ---------------------------------------------------------------------------
# Per-run state
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class TaskState:
    """Tracks one task's progress through a run."""

    name: str
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    last_error_type: Optional[str] = None
    completed_in_pass: Optional[int] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    def transition(self, new_status: TaskStatus) -> None:
        if new_status not in _VALID_TRANSITIONS[self.status]:
            raise RuntimeError(f"Invalid transition for task '{self.name}': {self.status.value} -> {new_status.value}")
        self.status = new_status
        if new_status == TaskStatus.RUNNING:
            self.attempts += 1
            self.started_at = self.started_at or time.time()
        elif new_status in (TaskStatus.DONE, TaskStatus.FAILED):
            self.finished_at = time.time()

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at or time.time()
        return end - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "attempts": self.attempts,
            "completed_in_pass": self.completed_in_pass,
            "duration_seconds": round(self.duration_seconds, 3),
            "error": self.last_error,
            "error_type": self.last_error_type,
        }
