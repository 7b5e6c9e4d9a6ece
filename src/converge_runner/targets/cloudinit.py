"""Target that compiles a run into a boot-time script for another host.

The host does not exist at render time, so nothing can be observed: tasks see
``check_existing = False`` and must emit unconditional, convergent operations.
Operations are kept in the order tasks requested them and serialized by
:meth:`CloudInitTarget.render`.
"""

from __future__ import annotations

import base64
import shlex
import sys
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, TextIO, Union

import yaml
from loguru import logger

from ..constants import SCRIPT_FORMAT_CLOUD_CONFIG, SCRIPT_FORMAT_SHELL, VALID_SCRIPT_FORMATS
from .base import Contents, Operation, Target, _to_bytes

CLOUD_CONFIG_HEADER = "#cloud-config\n"
SHELL_HEADER = "#!/bin/sh\nset -e\n"


def _command_line(op: Operation) -> str:
    line = " ".join(shlex.quote(a) for a in op.args)
    if op.env:
        assignments = " ".join(f"{k}={shlex.quote(v)}" for k, v in sorted(op.env.items()))
        line = f"env {assignments} {line}"
    if op.cwd:
        line = f"cd {shlex.quote(op.cwd)} && {line}"
    return line


def _write_file_lines(op: Operation) -> list[str]:
    path = shlex.quote(op.path or "")
    encoded = base64.b64encode(op.contents or b"").decode("ascii")
    lines = [
        f'mkdir -p "$(dirname {path})"',
        f"printf '%s' {shlex.quote(encoded)} | base64 -d > {path}",
    ]
    if op.mode is not None:
        lines.append(f"chmod {op.mode:04o} {path}")
    return lines


class CloudInitTarget(Target):
    """Accumulate operations and render them as a replayable document."""

    name = "cloudinit"
    check_existing = False

    def __init__(self, out: Optional[TextIO] = None, fmt: str = SCRIPT_FORMAT_CLOUD_CONFIG) -> None:
        super().__init__()
        if fmt not in VALID_SCRIPT_FORMATS:
            raise ValueError(f"Unsupported script format {fmt!r} (expected one of {', '.join(VALID_SCRIPT_FORMATS)})")
        self.out = out
        self.fmt = fmt
        self.operations: list[Operation] = []

    def write_file(self, path: Union[str, Path], contents: Contents, mode: Optional[int] = None) -> None:
        op = self._operation("write_file", path=str(path), contents=_to_bytes(contents), mode=mode)
        with self._lock:
            self.operations.append(op)

    def ensure_directory(self, path: Union[str, Path], mode: Optional[int] = None) -> None:
        op = self._operation("ensure_directory", path=str(path), mode=mode)
        with self._lock:
            self.operations.append(op)

    def run_command(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Union[str, Path]] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        op = self._operation(
            "run_command",
            args=[str(a) for a in args],
            cwd=str(cwd) if cwd else None,
            env=dict(env or {}),
        )
        with self._lock:
            self.operations.append(op)

    # -- rendering ---------------------------------------------------------

    def render(self) -> str:
        with self._lock:
            operations = list(self.operations)
        if self.fmt == SCRIPT_FORMAT_SHELL:
            return self._render_shell(operations)
        return self._render_cloud_config(operations)

    @staticmethod
    def _render_cloud_config(operations: list[Operation]) -> str:
        # cloud-init applies write_files before any runcmd entry, so only the
        # writes recorded ahead of the first other operation go there.  Later
        # writes become runcmd steps to keep the recorded order.
        write_files: list[dict[str, Any]] = []
        runcmd: list[Any] = []
        leading = True
        for op in operations:
            if op.kind != "write_file":
                leading = False
            if op.kind == "write_file" and not leading:
                runcmd.append(["sh", "-c", " && ".join(_write_file_lines(op))])
            elif op.kind == "write_file":
                entry: dict[str, Any] = {
                    "path": op.path,
                    "encoding": "b64",
                    "content": base64.b64encode(op.contents or b"").decode("ascii"),
                }
                if op.mode is not None:
                    entry["permissions"] = f"{op.mode:04o}"
                write_files.append(entry)
            elif op.kind == "ensure_directory":
                runcmd.append(["mkdir", "-p", op.path])
                if op.mode is not None:
                    runcmd.append(["chmod", f"{op.mode:04o}", op.path])
            elif op.cwd or op.env:
                runcmd.append(_command_line(op))
            else:
                runcmd.append(list(op.args))

        doc: dict[str, Any] = {}
        if write_files:
            doc["write_files"] = write_files
        if runcmd:
            doc["runcmd"] = runcmd
        if not doc:
            return CLOUD_CONFIG_HEADER
        return CLOUD_CONFIG_HEADER + yaml.safe_dump(doc, default_flow_style=False, sort_keys=False)

    @staticmethod
    def _render_shell(operations: list[Operation]) -> str:
        lines = [SHELL_HEADER.rstrip("\n")]
        for op in operations:
            if op.task:
                lines.append(f"# {op.task}")
            if op.kind == "write_file":
                lines.extend(_write_file_lines(op))
            elif op.kind == "ensure_directory":
                path = shlex.quote(op.path or "")
                lines.append(f"mkdir -p {path}")
                if op.mode is not None:
                    lines.append(f"chmod {op.mode:04o} {path}")
            else:
                line = _command_line(op)
                lines.append(f"({line})" if op.cwd else line)
        return "\n".join(lines) + "\n"

    def _finish(self, tasks: Mapping[str, Any]) -> None:
        document = self.render()
        logger.info("Rendered {} operation(s) as {}", len(self.operations), self.fmt)
        stream = self.out or sys.stdout
        stream.write(document)
        stream.flush()
