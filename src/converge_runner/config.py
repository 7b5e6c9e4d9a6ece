"""Load optional runner configuration from `.converge/config.yaml`."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .constants import (
    CONFIG_FILE,
    DEFAULT_CLI_NO_PROGRESS_BACKOFF_SECONDS,
    DEFAULT_MAX_ATTEMPTS_WITH_NO_PROGRESS,
    DEFAULT_MAX_WORKERS,
    STATE_DIR_NAME,
    VALID_TARGETS,
)
from .io_utils import _load_data_with_error


def load_runner_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional runner config file.

    Args:
        project_dir: Directory holding the `.converge/` state directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = project_dir.resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def get_engine_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the engine block with defaults filled in.

    Invalid values fall back to the defaults rather than failing the run.
    """
    raw = _get_nested(config, "engine")
    raw = raw if isinstance(raw, dict) else {}

    attempts = raw.get("max_attempts_with_no_progress")
    if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
        attempts = DEFAULT_MAX_ATTEMPTS_WITH_NO_PROGRESS

    backoff = raw.get("no_progress_backoff_seconds")
    if isinstance(backoff, bool) or not isinstance(backoff, (int, float)) or backoff < 0:
        backoff = DEFAULT_CLI_NO_PROGRESS_BACKOFF_SECONDS

    workers = raw.get("max_workers")
    if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
        workers = DEFAULT_MAX_WORKERS

    return {
        "max_attempts_with_no_progress": attempts,
        "no_progress_backoff_seconds": float(backoff),
        "max_workers": workers,
    }


def get_target_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the target block from the runner config.

    Returns:
        A mapping with `mode`, `fs_root` and `cache_dir` keys; missing or
        invalid entries are None.
    """
    raw = _get_nested(config, "target")
    raw = raw if isinstance(raw, dict) else {}
    mode = raw.get("mode")
    return {
        "mode": mode if mode in VALID_TARGETS else None,
        "fs_root": raw.get("fs_root") if isinstance(raw.get("fs_root"), str) else None,
        "cache_dir": raw.get("cache_dir") if isinstance(raw.get("cache_dir"), str) else None,
    }


def get_log_level_config(config: dict[str, Any]) -> str | None:
    raw = config.get("log_level")
    if isinstance(raw, str) and raw.strip():
        return raw.strip().upper()
    return None
