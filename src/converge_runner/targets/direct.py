"""Target that applies operations immediately on the local host."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

from loguru import logger

from ..errors import CommandError, ConfigurationError
from ..io_utils import _atomic_write_bytes
from .base import Change, Contents, Target, _to_bytes


class LocalFilesystem:
    """Read-only view of a filesystem rooted at ``fs_root``.

    Task paths are absolute paths on the node; they are re-rooted so a run can
    be pointed at a chroot or a scratch directory.
    """

    def __init__(self, fs_root: Union[str, Path] = "/") -> None:
        self.fs_root = Path(fs_root)

    @property
    def is_host_root(self) -> bool:
        return self.fs_root.resolve() == Path("/")

    def resolve(self, path: Union[str, Path]) -> Path:
        rel = str(path).lstrip("/")
        return self.fs_root / rel if rel else self.fs_root

    def read_file(self, path: Union[str, Path]) -> Optional[bytes]:
        p = self.resolve(path)
        if not p.is_file():
            return None
        return p.read_bytes()

    def path_exists(self, path: Union[str, Path]) -> bool:
        return self.resolve(path).exists()

    def is_directory(self, path: Union[str, Path]) -> bool:
        return self.resolve(path).is_dir()

    def file_mode(self, path: Union[str, Path]) -> Optional[int]:
        p = self.resolve(path)
        if not p.exists():
            return None
        return p.stat().st_mode & 0o7777


class DirectTarget(Target):
    """Apply every operation now, against ``fs_root`` and local processes."""

    name = "direct"
    check_existing = True

    def __init__(
        self,
        fs_root: Union[str, Path] = "/",
        command_timeout: Optional[float] = None,
    ) -> None:
        super().__init__()
        self.fs = LocalFilesystem(fs_root)
        self.command_timeout = command_timeout
        self.changes: list[Change] = []

    @property
    def fs_root(self) -> Path:
        return self.fs.fs_root

    def read_file(self, path: Union[str, Path]) -> Optional[bytes]:
        return self.fs.read_file(path)

    def path_exists(self, path: Union[str, Path]) -> bool:
        return self.fs.path_exists(path)

    def is_directory(self, path: Union[str, Path]) -> bool:
        return self.fs.is_directory(path)

    def file_mode(self, path: Union[str, Path]) -> Optional[int]:
        return self.fs.file_mode(path)

    def write_file(self, path: Union[str, Path], contents: Contents, mode: Optional[int] = None) -> None:
        dest = self.fs.resolve(path)
        data = _to_bytes(contents)
        with self._lock:
            logger.debug("Writing {} ({} bytes)", dest, len(data))
            _atomic_write_bytes(dest, data, mode=mode)

    def ensure_directory(self, path: Union[str, Path], mode: Optional[int] = None) -> None:
        dest = self.fs.resolve(path)
        with self._lock:
            if not dest.is_dir():
                logger.debug("Creating directory {}", dest)
                dest.mkdir(parents=True, exist_ok=True)
            if mode is not None and (dest.stat().st_mode & 0o7777) != mode:
                os.chmod(dest, mode)

    def run_command(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Union[str, Path]] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        argv = [str(a) for a in args]
        # Commands see the host filesystem, not fs_root; running them would
        # split a task's effects between two roots.
        if not self.fs.is_host_root:
            program = argv[0] if argv else ""
            raise ConfigurationError(
                f"Cannot run {program!r} with fs_root {self.fs_root}: commands always run against the host root"
            )
        run_env = None
        if env:
            run_env = dict(os.environ)
            run_env.update(env)
        logger.info("Running command: {}", " ".join(argv))
        try:
            proc = subprocess.run(
                argv,
                cwd=str(self.fs.resolve(cwd)) if cwd else None,
                env=run_env,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
            )
        except FileNotFoundError as exc:
            raise CommandError(argv, 127, str(exc)) from exc
        except subprocess.TimeoutExpired as exc:
            raise CommandError(argv, -1, f"timed out after {exc.timeout}s") from exc
        if proc.returncode != 0:
            raise CommandError(argv, proc.returncode, proc.stderr or "")

    def record_change(self, change: Change) -> None:
        with self._lock:
            self.changes.append(change)
        action = "Creating" if change.creating else "Updating"
        logger.info("{} {} {} ({})", action, change.kind, change.task, ", ".join(sorted(change.fields)) or "new")
