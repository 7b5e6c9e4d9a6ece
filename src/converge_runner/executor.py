"""Pass-based convergence loop.

Each pass runs every pending task whose dependencies were done when the pass
started.  Transient failures are retried on later passes; a permanent failure
aborts the run.  Instead of a per-task retry ceiling the loop counts
consecutive passes that complete nothing, because a task may legitimately wait
on others for a long time.  When that budget runs out the run stagnates.
"""

from __future__ import annotations

import concurrent.futures
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

from loguru import logger

from .constants import DEFAULT_MAX_ATTEMPTS_WITH_NO_PROGRESS, DEFAULT_MAX_WORKERS
from .errors import PermanentTaskError, StagnationError, StalledTask, is_transient
from .graph import check_graph
from .task import Task, TaskState, TaskStatus

if TYPE_CHECKING:
    from .context import ConvergeContext


@dataclass
class PassReport:
    """What happened during one pass over the task collection."""

    index: int
    attempted: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    deferred: dict[str, str] = field(default_factory=dict)  # name -> error message

    @property
    def made_progress(self) -> bool:
        return bool(self.completed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "attempted": list(self.attempted),
            "completed": list(self.completed),
            "deferred": dict(self.deferred),
        }


@dataclass
class RunResult:
    """Aggregate outcome of a convergence run."""

    states: dict[str, TaskState] = field(default_factory=dict)
    passes: list[PassReport] = field(default_factory=list)

    @property
    def pass_count(self) -> int:
        return len(self.passes)

    @property
    def done(self) -> list[str]:
        return sorted(n for n, s in self.states.items() if s.status == TaskStatus.DONE)

    @property
    def pending(self) -> list[str]:
        return sorted(n for n, s in self.states.items() if s.status in (TaskStatus.PENDING, TaskStatus.RUNNING))

    @property
    def failed(self) -> list[str]:
        return sorted(n for n, s in self.states.items() if s.status == TaskStatus.FAILED)

    @property
    def succeeded(self) -> bool:
        return all(s.status == TaskStatus.DONE for s in self.states.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "passes": self.pass_count,
            "done": self.done,
            "pending": self.pending,
            "failed": self.failed,
            "tasks": {name: self.states[name].to_dict() for name in sorted(self.states)},
        }


class TaskExecutor:
    """Drive a task collection to convergence against a context's target.

    Parameters
    ----------
    ctx:
        The convergence context; its target and flags are visible to tasks.
    max_attempts_with_no_progress:
        Consecutive passes allowed to complete nothing before stagnation.
    max_workers:
        Tasks of one pass run on a thread pool when greater than one.
    no_progress_backoff:
        Seconds to sleep after a pass that completed nothing.
    """

    def __init__(
        self,
        ctx: "ConvergeContext",
        *,
        max_attempts_with_no_progress: int = DEFAULT_MAX_ATTEMPTS_WITH_NO_PROGRESS,
        max_workers: int = DEFAULT_MAX_WORKERS,
        no_progress_backoff: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
        on_event: Optional[Callable[[str, dict[str, Any]], None]] = None,
    ) -> None:
        if isinstance(max_attempts_with_no_progress, bool) or not isinstance(max_attempts_with_no_progress, int):
            raise ValueError("max_attempts_with_no_progress must be a positive integer")
        if max_attempts_with_no_progress < 1:
            raise ValueError("max_attempts_with_no_progress must be a positive integer")
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if no_progress_backoff < 0:
            raise ValueError("no_progress_backoff must not be negative")
        self.ctx = ctx
        self.max_attempts_with_no_progress = max_attempts_with_no_progress
        self.max_workers = max_workers
        self.no_progress_backoff = no_progress_backoff
        self._sleep = sleep
        self._on_event = on_event  # callback(event_type: str, data: dict)
        self._lock = threading.Lock()
        self.result = RunResult()

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def run(self, tasks: Mapping[str, Task]) -> RunResult:
        """Run ``tasks`` until all are done.

        Raises:
            ConfigurationError: If the dependency graph is unknown or cyclic.
            PermanentTaskError: If a task fails permanently.
            StagnationError: If the no-progress budget is exhausted.
        """
        graph = check_graph(tasks)
        states = {name: TaskState(name=name) for name in tasks}
        self.result = RunResult(states=states)

        remaining = self.max_attempts_with_no_progress
        logger.info("Converging {} task(s)", len(tasks))

        while True:
            pending = sorted(n for n, s in states.items() if s.status == TaskStatus.PENDING)
            if not pending:
                break

            done = frozenset(n for n, s in states.items() if s.status == TaskStatus.DONE)
            ready = [n for n in pending if graph[n] <= done]
            report = PassReport(index=self.result.pass_count + 1, attempted=list(ready))
            self.result.passes.append(report)

            self._run_pass(report, ready, tasks, states)

            self._notify("pass_completed", report.to_dict())
            if report.made_progress:
                remaining = self.max_attempts_with_no_progress
                logger.debug(
                    "Pass {}: completed {} task(s), {} pending",
                    report.index,
                    len(report.completed),
                    len(pending) - len(report.completed),
                )
                continue

            remaining -= 1
            if remaining <= 0:
                stalled = self._stalled(states, graph)
                logger.error("Not making progress running tasks; giving up after {} pass(es)", report.index)
                raise StagnationError(stalled, passes=report.index)

            logger.info(
                "No progress made in pass {} ({} attempt(s) remaining), sleeping before retrying",
                report.index,
                remaining,
            )
            if self.no_progress_backoff:
                self._sleep(self.no_progress_backoff)

        logger.info("All {} task(s) converged in {} pass(es)", len(tasks), self.result.pass_count)
        return self.result

    def _run_pass(
        self,
        report: PassReport,
        ready: list[str],
        tasks: Mapping[str, Task],
        states: dict[str, TaskState],
    ) -> None:
        if self.max_workers == 1 or len(ready) <= 1:
            for name in ready:
                error = self._attempt(name, tasks[name], states[name])
                self._settle(report, name, states[name], error)
            return

        errors: dict[str, Optional[BaseException]] = {}
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {pool.submit(self._attempt, name, tasks[name], states[name]): name for name in ready}
            for future in concurrent.futures.as_completed(futures):
                errors[futures[future]] = future.result()
        # Settle in name order so the reported failure does not depend on timing.
        for name in ready:
            self._settle(report, name, states[name], errors[name])

    def _attempt(self, name: str, task: Task, state: TaskState) -> Optional[BaseException]:
        with self._lock:
            state.transition(TaskStatus.RUNNING)
        self._notify("task_started", {"task": name, "attempt": state.attempts})
        target = self.ctx.target
        target.bind_task(name)
        try:
            task.run(self.ctx)
        except Exception as exc:
            return exc
        finally:
            target.bind_task(None)
        return None

    def _settle(
        self,
        report: PassReport,
        name: str,
        state: TaskState,
        error: Optional[BaseException],
    ) -> None:
        with self._lock:
            if error is None:
                state.transition(TaskStatus.DONE)
                state.completed_in_pass = report.index
                state.last_error = None
                state.last_error_type = None
                report.completed.append(name)
            else:
                state.last_error = str(error) or type(error).__name__
                state.last_error_type = type(error).__name__
                if is_transient(error):
                    state.transition(TaskStatus.PENDING)
                    report.deferred[name] = state.last_error
                else:
                    state.transition(TaskStatus.FAILED)

        if error is None:
            logger.debug("Task {} done", name)
            self._notify("task_done", {"task": name, "pass": report.index})
            return

        if state.status == TaskStatus.PENDING:
            logger.warning("Error running task {} (attempt {}), will retry: {}", name, state.attempts, error)
            self._notify("task_deferred", {"task": name, "error": state.last_error})
            return

        logger.error("Task {} failed permanently: {}", name, error)
        self._notify("task_failed", {"task": name, "error": state.last_error})
        if isinstance(error, PermanentTaskError):
            raise error
        raise PermanentTaskError(name, error) from error

    @staticmethod
    def _stalled(states: dict[str, TaskState], graph: Mapping[str, set[str]]) -> dict[str, StalledTask]:
        done = {n for n, s in states.items() if s.status == TaskStatus.DONE}
        stalled: dict[str, StalledTask] = {}
        for name, state in states.items():
            if state.status != TaskStatus.PENDING:
                continue
            stalled[name] = StalledTask(
                name=name,
                blocked_on=sorted(graph[name] - done),
                attempts=state.attempts,
                last_error=state.last_error,
                last_error_type=state.last_error_type,
            )
        return stalled

    def _notify(self, event_type: str, data: dict[str, Any]) -> None:
        """Fire an event notification if a callback is registered."""
        if self._on_event:
            try:
                self._on_event(event_type, data)
            except Exception:
                logger.exception("Error in convergence event callback")
