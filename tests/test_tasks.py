"""Tests for the delta helper and the built-in task kinds."""

from __future__ import annotations

import io
from pathlib import Path

import pytest
import yaml

from converge_runner.context import ConvergeContext
from converge_runner.delta import compute_changes
from converge_runner.errors import PermanentTaskError
from converge_runner.runner import converge
from converge_runner.targets import CloudInitTarget, DirectTarget, DryRunTarget
from converge_runner.tasks import CommandTask, FileTask, LoadImageTask, parse_mode, task_registry

SHA = "a" * 64


def _run(task, target, name="task"):
    with ConvergeContext(target) as ctx:
        return ctx.run_tasks({name: task})


class TestComputeChanges:
    def test_none_expected_is_ignored(self):
        expected = FileTask(path="/x", contents="a", mode=None)
        actual = FileTask(path="/x", contents="a", mode=0o600)
        assert compute_changes(actual, expected, FileTask.compare_fields) == {}

    def test_missing_actual_reports_every_field(self):
        expected = FileTask(path="/x", contents="a", mode=0o644)
        changes = compute_changes(None, expected, FileTask.compare_fields)
        assert changes == {"type": (None, "file"), "contents": (None, "a"), "mode": (None, 0o644)}


class TestFileTask:
    def test_second_run_has_no_side_effect(self, tmp_path: Path):
        target = DirectTarget(fs_root=tmp_path)
        task = FileTask(path="/etc/app.conf", contents="x=1\n", mode=0o644)

        _run(task, target)
        written = tmp_path / "etc" / "app.conf"
        first_stat = written.stat()
        assert written.read_text() == "x=1\n"
        assert len(target.changes) == 1
        assert target.changes[0].creating

        _run(task, target)
        assert len(target.changes) == 1
        assert written.stat().st_mtime_ns == first_stat.st_mtime_ns
        assert written.stat().st_ino == first_stat.st_ino

    def test_modifies_only_differing_fields(self, tmp_path: Path):
        (tmp_path / "etc").mkdir()
        (tmp_path / "etc" / "app.conf").write_text("x=1\n")
        target = DirectTarget(fs_root=tmp_path)

        _run(FileTask(path="/etc/app.conf", contents="x=2\n"), target)

        change = target.changes[0]
        assert not change.creating
        assert change.fields == {"contents": ("x=1\n", "x=2\n")}
        assert (tmp_path / "etc" / "app.conf").read_text() == "x=2\n"

    def test_directory(self, tmp_path: Path):
        target = DirectTarget(fs_root=tmp_path)
        _run(FileTask(path="/srv/data", type="directory", mode="0700"), target)
        assert (tmp_path / "srv" / "data").is_dir()
        assert target.file_mode("/srv/data") == 0o700

    def test_type_conflict_is_permanent(self, tmp_path: Path):
        (tmp_path / "srv").mkdir()
        target = DirectTarget(fs_root=tmp_path)
        with pytest.raises(PermanentTaskError) as excinfo:
            _run(FileTask(path="/srv", contents="oops"), target, name="srv")
        assert excinfo.value.task_name == "srv"
        assert "Cannot change /srv" in str(excinfo.value)

    def test_dry_run_leaves_filesystem_untouched(self, tmp_path: Path):
        out = io.StringIO()
        tasks = {
            "dir": FileTask(path="/etc/app", type="directory"),
            "conf": FileTask(path="/etc/app/app.conf", contents="a", depends_on=["dir"]),
            "restart": CommandTask(command=["systemctl", "restart", "app"], depends_on=["conf"]),
        }
        result = converge(tasks, target="dryrun", out=out, fs_root=tmp_path)

        assert result.succeeded
        assert result.done == ["conf", "dir", "restart"]
        assert list(tmp_path.iterdir()) == []
        report = out.getvalue()
        assert "Will create resources:" in report
        assert "systemctl restart app" in report

    def test_cloudinit_renders_without_probing(self, tmp_path: Path):
        target = CloudInitTarget()
        _run(FileTask(path="/etc/app.conf", contents="a", mode=0o600), target)
        [op] = target.operations
        assert op.kind == "write_file"
        assert op.path == "/etc/app.conf"
        assert op.mode == 0o600
        assert op.task == "task"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"path": "relative/path"},
            {"path": "/x", "type": "symlink"},
            {"path": "/x", "mode": "rwx"},
            {"path": "/x", "contents": 8080},
        ],
    )
    def test_invalid_declarations(self, kwargs):
        with pytest.raises(ValueError):
            FileTask(**kwargs)

    def test_parse_mode(self):
        assert parse_mode("0644") == 0o644
        assert parse_mode(0o755) == 0o755
        assert parse_mode(None) is None
        assert parse_mode("") is None


class TestCommandTask:
    def test_creates_guard_skips_on_observable_target(self, tmp_path: Path):
        (tmp_path / "opt").mkdir()
        (tmp_path / "opt" / "installed").write_text("")
        target = DryRunTarget(fs_root=tmp_path)
        _run(CommandTask(command="./install.sh", creates="/opt/installed"), target)
        assert target.operations == []

    def test_creates_guard_runs_when_missing(self, tmp_path: Path):
        target = DryRunTarget(fs_root=tmp_path)
        _run(CommandTask(command="./install.sh --yes", creates="/opt/installed"), target)
        [op] = target.operations
        assert op.args == ["./install.sh", "--yes"]

    def test_creates_guard_rendered_into_script(self):
        target = CloudInitTarget()
        _run(CommandTask(command=["./install.sh"], creates="/opt/installed"), target)
        [op] = target.operations
        assert op.args == ["sh", "-c", "test -e /opt/installed || ./install.sh"]

    def test_env_and_cwd_are_forwarded(self):
        target = CloudInitTarget()
        _run(CommandTask(command=["make"], cwd="/src", env={"JOBS": 4}), target)
        [op] = target.operations
        assert op.cwd == "/src"
        assert op.env == {"JOBS": "4"}

    def test_empty_command_rejected(self):
        with pytest.raises(ValueError):
            CommandTask(command=[])


class TestLoadImageTask:
    def test_renders_fetch_verify_load(self):
        target = CloudInitTarget()
        task = LoadImageTask(source="https://example.com/pause.tar", hash=SHA.upper(), cache_dir="/var/cache/img")
        _run(task, target)

        kinds = [op.kind for op in target.operations]
        assert kinds == ["ensure_directory", "run_command", "write_file"]
        script = target.operations[1].args[2]
        assert "curl -fsSL" in script
        assert "sha256sum -c --status" in script
        assert f"docker load -i /var/cache/img/{SHA}.tar" in script
        assert target.operations[2].path == f"/var/cache/img/{SHA}.tar.loaded"

    def test_local_source_is_copied(self):
        task = LoadImageTask(source="/images/pause.tar", hash=SHA)
        assert "cp /images/pause.tar" in task.load_script()

    def test_skips_when_already_loaded(self, tmp_path: Path):
        task = LoadImageTask(source="https://example.com/pause.tar", hash=SHA, cache_dir="/cache")
        (tmp_path / "cache").mkdir()
        (tmp_path / "cache" / f"{SHA}.tar.loaded").write_text("done\n")
        target = DryRunTarget(fs_root=tmp_path)
        _run(task, target)
        assert target.operations == []

    def test_invalid_hash(self):
        with pytest.raises(ValueError, match="sha256"):
            LoadImageTask(source="https://example.com/x.tar", hash="abc")

    def test_cloud_config_marks_loaded_after_docker_load(self):
        out = io.StringIO()
        task = LoadImageTask(source="https://example.com/pause.tar", hash=SHA, cache_dir="/var/cache/img")
        result = converge({"img": task}, target="cloudinit", out=out)

        assert result.succeeded
        doc = yaml.safe_load(out.getvalue())
        assert "write_files" not in doc
        steps = [" ".join(step) if isinstance(step, list) else step for step in doc["runcmd"]]
        load = next(i for i, step in enumerate(steps) if "docker load" in step)
        marker = next(i for i, step in enumerate(steps) if f"{SHA}.tar.loaded" in step)
        assert load < marker


class TestCloudConfigOrdering:
    def test_dependent_file_is_written_after_its_dependency(self):
        out = io.StringIO()
        tasks = {
            "mount": CommandTask(command=["mount", "/dev/vdb", "/data"]),
            "conf": FileTask(path="/data/app.conf", contents="listen = 8080\n", depends_on=["mount"]),
        }
        result = converge(tasks, target="cloudinit", out=out)

        assert result.succeeded
        doc = yaml.safe_load(out.getvalue())
        assert "write_files" not in doc
        mount, write = doc["runcmd"]
        assert mount == ["mount", "/dev/vdb", "/data"]
        assert write[:2] == ["sh", "-c"]
        assert "base64 -d > /data/app.conf" in write[2]


class TestTaskRegistry:
    def test_builtin_kinds_registered(self):
        assert task_registry.list_kinds() == ["command", "file", "load_image"]

    def test_unknown_kind(self):
        with pytest.raises(KeyError, match="Unknown task kind"):
            task_registry.get("service")

    def test_create(self):
        task = task_registry.create("file", "conf", {"path": "/etc/x", "contents": "y"})
        assert isinstance(task, FileTask)
        assert task.contents == "y"

    def test_conflicting_registration(self):
        with pytest.raises(ValueError, match="already registered"):
            task_registry.register("file")(CommandTask)
