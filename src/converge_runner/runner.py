"""Build a target, converge a task map against it, and finish the target."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Mapping, Optional, TextIO, Union

from loguru import logger

from .constants import DEFAULT_MAX_ATTEMPTS_WITH_NO_PROGRESS, DEFAULT_MAX_WORKERS, SCRIPT_FORMAT_CLOUD_CONFIG
from .context import ConvergeContext
from .executor import RunResult
from .targets import Target, build_target
from .task import Task


def converge(
    tasks: Mapping[str, Task],
    *,
    target: Union[str, Target] = "direct",
    out: Optional[TextIO] = None,
    fs_root: Union[str, Path] = "/",
    fmt: str = SCRIPT_FORMAT_CLOUD_CONFIG,
    cloud: Any = None,
    ca_store: Any = None,
    secret_store: Any = None,
    check_existing: Optional[bool] = None,
    max_attempts_with_no_progress: int = DEFAULT_MAX_ATTEMPTS_WITH_NO_PROGRESS,
    max_workers: int = DEFAULT_MAX_WORKERS,
    no_progress_backoff: float = 0.0,
    on_event: Optional[Callable[[str, dict[str, Any]], None]] = None,
) -> RunResult:
    """Run one convergence of ``tasks``.

    ``target`` is either a mode name (``direct``, ``dryrun``, ``cloudinit``)
    or a ready-made :class:`Target`.  The target is finished only when every
    task converged, and the context is closed whatever the outcome.

    Raises:
        ValueError: For an unknown target mode or invalid budget.
        ConvergeError: The terminal error of a failed run.
    """
    if isinstance(target, str):
        target_obj, default_check = build_target(target, out=out, fs_root=fs_root, fmt=fmt)
    else:
        target_obj, default_check = target, target.check_existing

    logger.info("Converging {} task(s) with target {}", len(tasks), target_obj.name)
    with ConvergeContext(
        target_obj,
        cloud=cloud,
        ca_store=ca_store,
        secret_store=secret_store,
        check_existing=default_check if check_existing is None else check_existing,
        max_attempts_with_no_progress=max_attempts_with_no_progress,
        max_workers=max_workers,
        no_progress_backoff=no_progress_backoff,
        on_event=on_event,
    ) as ctx:
        result = ctx.run_tasks(tasks)
        target_obj.finish(tasks)
    return result
