"""Convergence context: the target, ambient handles and run policy for one run."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from loguru import logger

from .constants import DEFAULT_MAX_ATTEMPTS_WITH_NO_PROGRESS, DEFAULT_MAX_WORKERS
from .executor import RunResult, TaskExecutor
from .targets.base import Target
from .task import Task


class ConvergeContext:
    """Everything a task can see while it runs, plus the run loop entry point.

    The cloud, CA and secret store handles are passed through to tasks
    unopened.  The context owns them for the run: :meth:`close` (or leaving a
    ``with`` block) closes the target and any handle that has a ``close``
    method, whatever the outcome of the run.
    """

    def __init__(
        self,
        target: Target,
        *,
        cloud: Any = None,
        ca_store: Any = None,
        secret_store: Any = None,
        check_existing: Optional[bool] = None,
        max_attempts_with_no_progress: int = DEFAULT_MAX_ATTEMPTS_WITH_NO_PROGRESS,
        max_workers: int = DEFAULT_MAX_WORKERS,
        no_progress_backoff: float = 0.0,
        on_event: Optional[Callable[[str, dict[str, Any]], None]] = None,
    ) -> None:
        if target is None:
            raise ValueError("target is required")
        self.target = target
        self.cloud = cloud
        self.ca_store = ca_store
        self.secret_store = secret_store
        self.check_existing = target.check_existing if check_existing is None else bool(check_existing)
        self.tasks: Mapping[str, Task] = {}
        self._executor = TaskExecutor(
            self,
            max_attempts_with_no_progress=max_attempts_with_no_progress,
            max_workers=max_workers,
            no_progress_backoff=no_progress_backoff,
            on_event=on_event,
        )
        self._running = False
        self._closed = False

    @property
    def max_attempts_with_no_progress(self) -> int:
        return self._executor.max_attempts_with_no_progress

    @property
    def last_result(self) -> RunResult:
        """Task states of the most recent run, including a failed one."""
        return self._executor.result

    def run_tasks(self, tasks: Mapping[str, Task]) -> RunResult:
        """Converge ``tasks`` against the target."""
        if self._closed:
            raise RuntimeError("ConvergeContext is closed")
        if self._running:
            raise RuntimeError("ConvergeContext is already running tasks")
        self._running = True
        self.tasks = tasks
        try:
            return self._executor.run(tasks)
        finally:
            self._running = False

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for handle in (self.target, self.cloud, self.ca_store, self.secret_store):
            close = getattr(handle, "close", None)
            if callable(close):
                try:
                    close()
                except Exception:
                    logger.exception("Error closing {}", type(handle).__name__)

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "ConvergeContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
