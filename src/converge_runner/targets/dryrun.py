"""Target that previews a run: observes real state, records every mutation."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, TextIO, Union

from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .base import Change, Contents, Operation, Target, _to_bytes
from .direct import LocalFilesystem

_MAX_VALUE_CHARS = 60


def _short(value: Any) -> str:
    if isinstance(value, bytes):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError:
            return f"<{len(value)} bytes>"
    text = repr(value).replace("\n", "\\n")
    if len(text) > _MAX_VALUE_CHARS:
        text = text[: _MAX_VALUE_CHARS - 1] + "…"
    return text


class DryRunTarget(Target):
    """Make the same decisions as a direct run without any side effects."""

    name = "dryrun"
    check_existing = True

    def __init__(self, out: Optional[TextIO] = None, fs_root: Union[str, Path] = "/") -> None:
        super().__init__()
        self.out = out
        self.fs = LocalFilesystem(fs_root)
        self.changes: list[Change] = []
        self.operations: list[Operation] = []

    def read_file(self, path: Union[str, Path]) -> Optional[bytes]:
        return self.fs.read_file(path)

    def path_exists(self, path: Union[str, Path]) -> bool:
        return self.fs.path_exists(path)

    def is_directory(self, path: Union[str, Path]) -> bool:
        return self.fs.is_directory(path)

    def file_mode(self, path: Union[str, Path]) -> Optional[int]:
        return self.fs.file_mode(path)

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

    def record_change(self, change: Change) -> None:
        with self._lock:
            self.changes.append(change)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes or self.operations)

    def report(self) -> str:
        """Render the preview as plain text."""
        console = Console(record=True, width=120)
        self._print_report(console)
        return console.export_text()

    def _print_report(self, console: Console) -> None:
        with self._lock:
            changes = sorted(self.changes, key=lambda c: (c.kind, c.task))
            operations = list(self.operations)

        if not changes and not operations:
            console.print("No changes need to be applied")
            return

        creates = [c for c in changes if c.creating]
        modifies = [c for c in changes if not c.creating]

        if creates:
            console.print("[bold]Will create resources:[/bold]")
            for change in creates:
                console.print(f"  {escape(change.kind)}\t{escape(change.task)}")
            console.print()

        if modifies:
            console.print("[bold]Will modify resources:[/bold]")
            table = Table(show_header=True)
            table.add_column("Task", style="cyan")
            table.add_column("Field", style="bold")
            table.add_column("Actual")
            table.add_column("Expected", style="green")
            for change in modifies:
                for field_name in sorted(change.fields):
                    actual, expected = change.fields[field_name]
                    table.add_row(
                        escape(change.task),
                        escape(field_name),
                        escape(_short(actual)),
                        escape(_short(expected)),
                    )
            console.print(table)
            console.print()

        if operations:
            console.print("[bold]Planned operations:[/bold]")
            for op in operations:
                owner = f"[dim]{escape(op.task)}[/dim] " if op.task else ""
                console.print(f"  {owner}{escape(op.describe())}")

    def _finish(self, tasks: Mapping[str, Any]) -> None:
        logger.info("Dry run complete: {} change(s), {} operation(s)", len(self.changes), len(self.operations))
        console = Console(file=self.out or sys.stdout, width=120)
        self._print_report(console)
