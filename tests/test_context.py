"""Tests for ConvergeContext lifecycle and the converge() entry point."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from converge_runner.context import ConvergeContext
from converge_runner.errors import PermanentTaskError
from converge_runner.runner import converge
from converge_runner.targets import CloudInitTarget, DirectTarget, DryRunTarget
from converge_runner.task import Task


class Handle:
    def __init__(self) -> None:
        self.closed = 0

    def close(self) -> None:
        self.closed += 1


@dataclass
class SeeingTask(Task):
    """Captures what the context exposes to tasks."""

    seen: dict[str, Any] = field(default_factory=dict)

    def run(self, ctx: ConvergeContext) -> None:
        self.seen.update(
            cloud=ctx.cloud,
            ca_store=ctx.ca_store,
            secret_store=ctx.secret_store,
            check_existing=ctx.check_existing,
        )


@dataclass
class BrokenTask(Task):
    def run(self, ctx: ConvergeContext) -> None:
        raise KeyError("boom")


class TestContextLifecycle:
    def test_handles_are_passed_through(self):
        cloud, ca, secrets = object(), object(), object()
        task = SeeingTask()
        with ConvergeContext(CloudInitTarget(), cloud=cloud, ca_store=ca, secret_store=secrets) as ctx:
            ctx.run_tasks({"t": task})
        assert task.seen["cloud"] is cloud
        assert task.seen["ca_store"] is ca
        assert task.seen["secret_store"] is secrets

    def test_check_existing_follows_target(self, tmp_path: Path):
        assert ConvergeContext(DirectTarget(fs_root=tmp_path)).check_existing is True
        assert ConvergeContext(DryRunTarget(fs_root=tmp_path)).check_existing is True
        assert ConvergeContext(CloudInitTarget()).check_existing is False
        assert ConvergeContext(DirectTarget(fs_root=tmp_path), check_existing=False).check_existing is False

    def test_close_releases_target_and_handles_once(self):
        target = CloudInitTarget()
        cloud, secrets = Handle(), Handle()
        ctx = ConvergeContext(target, cloud=cloud, secret_store=secrets)
        ctx.close()
        ctx.close()
        assert ctx.closed
        assert target._closed
        assert cloud.closed == 1
        assert secrets.closed == 1

    def test_close_happens_when_run_fails(self):
        cloud = Handle()
        with pytest.raises(PermanentTaskError):
            with ConvergeContext(CloudInitTarget(), cloud=cloud) as ctx:
                ctx.run_tasks({"broken": BrokenTask()})
        assert cloud.closed == 1

    def test_run_after_close_is_rejected(self):
        ctx = ConvergeContext(CloudInitTarget())
        ctx.close()
        with pytest.raises(RuntimeError, match="closed"):
            ctx.run_tasks({})

    def test_context_requires_target(self):
        with pytest.raises(ValueError):
            ConvergeContext(None)  # type: ignore[arg-type]

    def test_reentrant_run_is_rejected(self):
        @dataclass
        class NestedTask(Task):
            error: list[Exception] = field(default_factory=list)

            def run(self, ctx: ConvergeContext) -> None:
                try:
                    ctx.run_tasks({})
                except RuntimeError as exc:
                    self.error.append(exc)

        task = NestedTask()
        with ConvergeContext(CloudInitTarget()) as ctx:
            ctx.run_tasks({"nested": task})
        assert task.error and "already running" in str(task.error[0])


class TestConverge:
    def test_finish_runs_after_success(self):
        out = io.StringIO()
        target = CloudInitTarget(out=out)
        converge({"t": SeeingTask()}, target=target)
        assert target.finished
        assert out.getvalue().startswith("#cloud-config")

    def test_finish_skipped_when_run_fails(self):
        out = io.StringIO()
        target = CloudInitTarget(out=out)
        with pytest.raises(PermanentTaskError):
            converge({"broken": BrokenTask()}, target=target)
        assert not target.finished
        assert out.getvalue() == ""
        assert target._closed

    def test_mode_name_builds_target(self):
        out = io.StringIO()
        task = SeeingTask()
        result = converge({"t": task}, target="cloudinit", out=out)
        assert result.succeeded
        assert task.seen["check_existing"] is False

    def test_unknown_mode(self):
        with pytest.raises(ValueError, match="Unsupported target type"):
            converge({}, target="ssh")
