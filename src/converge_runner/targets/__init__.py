"""Execution targets: apply now, preview, or render a script for later."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, TextIO, Union

from ..constants import SCRIPT_FORMAT_CLOUD_CONFIG, TARGET_CLOUDINIT, TARGET_DIRECT, TARGET_DRYRUN, VALID_TARGETS
from .base import Change, Operation, Target
from .cloudinit import CloudInitTarget
from .direct import DirectTarget, LocalFilesystem
from .dryrun import DryRunTarget


def build_target(
    mode: str,
    *,
    out: Optional[TextIO] = None,
    fs_root: Union[str, Path] = "/",
    fmt: str = SCRIPT_FORMAT_CLOUD_CONFIG,
) -> tuple[Target, bool]:
    """Create the target for ``mode`` and the matching ``check_existing`` flag."""
    if mode == TARGET_DIRECT:
        target: Target = DirectTarget(fs_root=fs_root)
    elif mode == TARGET_DRYRUN:
        target = DryRunTarget(out=out, fs_root=fs_root)
    elif mode == TARGET_CLOUDINIT:
        target = CloudInitTarget(out=out, fmt=fmt)
    else:
        raise ValueError(f"Unsupported target type {mode!r} (expected one of {', '.join(VALID_TARGETS)})")
    return target, target.check_existing


__all__ = [
    "Change",
    "CloudInitTarget",
    "DirectTarget",
    "DryRunTarget",
    "LocalFilesystem",
    "Operation",
    "Target",
    "build_target",
]
