"""Provide the public `converge_runner` package exports."""

from __future__ import annotations

from .context import ConvergeContext
from .delta import DeltaTask
from .errors import (
    CommandError,
    ConfigurationError,
    ConvergeError,
    DependencyCycleError,
    ManifestError,
    PermanentTaskError,
    StagnationError,
    TransientTaskError,
    UnknownDependencyError,
)
from .executor import RunResult, TaskExecutor
from .runner import converge
from .targets import CloudInitTarget, DirectTarget, DryRunTarget, Target, build_target
from .task import Task, TaskStatus, dependency

__all__ = [
    "CloudInitTarget",
    "CommandError",
    "ConfigurationError",
    "ConvergeContext",
    "ConvergeError",
    "DeltaTask",
    "DependencyCycleError",
    "DirectTarget",
    "DryRunTarget",
    "ManifestError",
    "PermanentTaskError",
    "RunResult",
    "StagnationError",
    "Target",
    "Task",
    "TaskExecutor",
    "TaskStatus",
    "TransientTaskError",
    "UnknownDependencyError",
    "build_target",
    "converge",
    "dependency",
]
