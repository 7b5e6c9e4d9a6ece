"""Commands run on the node, optionally guarded by a path they create."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Union

from loguru import logger

from ..task import Task, dependency
from .registry import task_registry

if TYPE_CHECKING:
    from ..context import ConvergeContext


@task_registry.register("command")
@dataclass
class CommandTask(Task):
    """Run a command; with ``creates`` set, only when that path is missing.

    When the context cannot observe the host the guard is rendered into the
    command itself, so the emitted operation stays safe to replay.
    """

    command: Union[list[str], str] = field(default_factory=list)
    creates: Optional[str] = None
    cwd: Optional[str] = None
    env: dict[str, str] = field(default_factory=dict)
    depends_on: list[Any] = dependency(default=[])

    def __post_init__(self) -> None:
        if isinstance(self.command, str):
            self.command = shlex.split(self.command)
        self.command = [str(a) for a in self.command]
        if not self.command:
            raise ValueError("CommandTask requires a non-empty command")
        self.env = {str(k): str(v) for k, v in (self.env or {}).items()}

    @classmethod
    def from_spec(cls, name: str, params: dict[str, Any]) -> "CommandTask":
        return cls(**params)

    def guarded_command(self) -> list[str]:
        if not self.creates:
            return list(self.command)
        line = " ".join(shlex.quote(a) for a in self.command)
        return ["sh", "-c", f"test -e {shlex.quote(self.creates)} || {line}"]

    def run(self, ctx: "ConvergeContext") -> None:
        target = ctx.target
        if self.creates and ctx.check_existing:
            if target.path_exists(self.creates):
                logger.debug("Skipping command {}: {} exists", self.command[0], self.creates)
                return
            target.run_command(self.command, cwd=self.cwd, env=self.env or None)
            return
        target.run_command(self.guarded_command(), cwd=self.cwd, env=self.env or None)
