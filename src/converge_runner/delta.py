"""Find / compare / apply helper for tasks that manage observable state.

A :class:`DeltaTask` describes desired state in its fields.  On each run it
asks for the actual state (only when the context can observe it), computes the
fields that differ, and applies only when there is something to change.  Run
twice against an already converged host, the second run does nothing.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar, Optional

from loguru import logger

from .targets.base import Change, Target
from .task import Task

if TYPE_CHECKING:
    from .context import ConvergeContext


def compute_changes(actual: Optional[Any], expected: Any, fields: tuple[str, ...]) -> dict[str, tuple[Any, Any]]:
    """Return ``{field: (actual, expected)}`` for compared fields that differ.

    A None expected value means "don't care" and never produces a change.
    """
    changes: dict[str, tuple[Any, Any]] = {}
    for name in fields:
        want = getattr(expected, name, None)
        if want is None:
            continue
        have = getattr(actual, name, None) if actual is not None else None
        if have != want:
            changes[name] = (have, want)
    return changes


class DeltaTask(Task):
    """Base for tasks that converge by diffing actual against desired state."""

    #: Field names compared between actual and desired state.
    compare_fields: ClassVar[tuple[str, ...]] = ()

    @property
    def task_name(self) -> str:
        return getattr(self, "name", None) or type(self).__name__

    @abstractmethod
    def find(self, ctx: "ConvergeContext") -> Optional["DeltaTask"]:
        """Return the actual state as an instance of this type, or None if absent."""
        ...

    def check_changes(self, actual: Optional["DeltaTask"], changes: dict[str, tuple[Any, Any]]) -> None:
        """Reject changes that cannot be applied; override to validate."""
        return None

    @abstractmethod
    def apply(
        self,
        target: Target,
        actual: Optional["DeltaTask"],
        changes: dict[str, tuple[Any, Any]],
        ctx: "ConvergeContext",
    ) -> None:
        """Perform the changes through ``target``'s capability methods."""
        ...

    def run(self, ctx: "ConvergeContext") -> None:
        actual = self.find(ctx) if ctx.check_existing else None
        changes = compute_changes(actual, self, self.compare_fields)
        name = ctx.target.current_task or self.task_name

        if actual is not None and not changes:
            logger.debug("{} {} is up to date", type(self).__name__, name)
            return

        self.check_changes(actual, changes)
        ctx.target.record_change(
            Change(task=name, kind=type(self).__name__, creating=actual is None, fields=changes)
        )
        self.apply(ctx.target, actual, changes, ctx)
