"""Capability interface shared by every execution target.

Tasks call these methods without knowing which target is active; each target
decides whether an operation is applied, recorded for preview, or rendered
into a script for another host.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

Contents = Union[str, bytes]


def _to_bytes(contents: Contents) -> bytes:
    return contents.encode("utf-8") if isinstance(contents, str) else bytes(contents)


@dataclass
class Operation:
    """One mutating operation requested by a task."""

    kind: str  # write_file | ensure_directory | run_command
    task: Optional[str] = None
    path: Optional[str] = None
    contents: Optional[bytes] = None
    mode: Optional[int] = None
    args: list[str] = field(default_factory=list)
    cwd: Optional[str] = None
    env: dict[str, str] = field(default_factory=dict)

    def describe(self) -> str:
        if self.kind == "write_file":
            size = len(self.contents or b"")
            mode = f" mode={self.mode:04o}" if self.mode is not None else ""
            return f"write {self.path} ({size} bytes{mode})"
        if self.kind == "ensure_directory":
            mode = f" mode={self.mode:04o}" if self.mode is not None else ""
            return f"mkdir -p {self.path}{mode}"
        return "run " + " ".join(self.args)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"kind": self.kind, "task": self.task}
        if self.path is not None:
            d["path"] = self.path
        if self.mode is not None:
            d["mode"] = f"{self.mode:04o}"
        if self.args:
            d["args"] = list(self.args)
        if self.cwd:
            d["cwd"] = self.cwd
        return d


@dataclass
class Change:
    """A task's computed difference between actual and desired state."""

    task: str
    kind: str  # task type, e.g. "FileTask"
    creating: bool
    fields: dict[str, tuple[Any, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task,
            "kind": self.kind,
            "action": "create" if self.creating else "modify",
            "fields": {k: {"actual": a, "expected": e} for k, (a, e) in self.fields.items()},
        }


class Target(ABC):
    """Strategy object that realizes task operations."""

    name: str = "target"
    #: Whether tasks can observe real state through this target.
    check_existing: bool = True

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._current_task = threading.local()
        self._finished = False
        self._closed = False

    # -- bookkeeping -------------------------------------------------------

    def bind_task(self, task_name: Optional[str]) -> None:
        """Attribute subsequent operations from this thread to ``task_name``."""
        self._current_task.name = task_name

    @property
    def current_task(self) -> Optional[str]:
        return getattr(self._current_task, "name", None)

    # -- observation -------------------------------------------------------

    def read_file(self, path: Union[str, Path]) -> Optional[bytes]:
        """Return the contents of ``path`` or None if it is absent or unobservable."""
        return None

    def path_exists(self, path: Union[str, Path]) -> bool:
        return False

    def file_mode(self, path: Union[str, Path]) -> Optional[int]:
        return None

    def is_directory(self, path: Union[str, Path]) -> bool:
        return False

    # -- mutation ----------------------------------------------------------

    @abstractmethod
    def write_file(self, path: Union[str, Path], contents: Contents, mode: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def ensure_directory(self, path: Union[str, Path], mode: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def run_command(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Union[str, Path]] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        ...

    def record_change(self, change: Change) -> None:
        """Receive a task's computed change set before it is applied."""
        return None

    # -- lifecycle ---------------------------------------------------------

    def finish(self, tasks: Mapping[str, Any]) -> None:
        """Flush target output after a successful run.  Idempotent."""
        with self._lock:
            if self._finished:
                return
            self._finished = True
        self._finish(tasks)

    def _finish(self, tasks: Mapping[str, Any]) -> None:
        return None

    @property
    def finished(self) -> bool:
        return self._finished

    def close(self) -> None:
        self._closed = True

    def _operation(self, kind: str, **kwargs: Any) -> Operation:
        return Operation(kind=kind, task=self.current_task, **kwargs)
