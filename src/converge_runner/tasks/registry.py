"""Registry of task kinds available to manifests.

Task classes register themselves on import under a kind name.  The manifest
loader looks kinds up here when it turns declarations into task objects.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, TypeVar

from ..task import Task

T = TypeVar("T", bound=type[Task])


class TaskRegistry:
    """Map kind names to task classes."""

    def __init__(self) -> None:
        self._kinds: dict[str, type[Task]] = {}

    def register(self, kind: str) -> Callable[[T], T]:
        """Register a task class under ``kind``.  Used as a decorator."""

        def decorator(task_cls: T) -> T:
            existing = self._kinds.get(kind)
            if existing is not None and existing is not task_cls:
                raise ValueError(f"Task kind '{kind}' is already registered to {existing.__name__}")
            self._kinds[kind] = task_cls
            return task_cls

        return decorator

    def get(self, kind: str) -> type[Task]:
        if kind not in self._kinds:
            available = ", ".join(sorted(self._kinds.keys()))
            raise KeyError(f"Unknown task kind '{kind}' (registered: {available})")
        return self._kinds[kind]

    def has(self, kind: str) -> bool:
        return kind in self._kinds

    def create(self, kind: str, name: str, params: Mapping[str, Any]) -> Task:
        task_cls = self.get(kind)
        from_spec = getattr(task_cls, "from_spec", None)
        if callable(from_spec):
            return from_spec(name, dict(params))
        return task_cls(**dict(params))

    def list_kinds(self) -> list[str]:
        return sorted(self._kinds.keys())


# Singleton registry; built-in kinds register here on import
task_registry = TaskRegistry()
