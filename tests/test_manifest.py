"""Tests for manifest loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from converge_runner.errors import ManifestError
from converge_runner.graph import check_graph
from converge_runner.manifest import build_tasks, load_manifest
from converge_runner.tasks import CommandTask, FileTask, LoadImageTask

SHA = "b" * 64

MANIFEST = """\
tasks:
  app-dir:
    kind: file
    type: directory
    path: /etc/app
    mode: "0755"
  app-config:
    kind: file
    path: /etc/app/app.conf
    contents: "listen = 8080\\n"
    depends_on: [app-dir]
  restart:
    kind: command
    command: systemctl restart app
    depends_on: [app-config]
images:
  - source: https://example.com/pause.tar
    hash: {sha}
image_cache_dir: /var/cache/images
""".format(sha=SHA)


def test_load_yaml_manifest(tmp_path: Path):
    path = tmp_path / "node.yaml"
    path.write_text(MANIFEST)

    tasks = load_manifest(path)

    assert sorted(tasks) == ["LoadImage.0", "app-config", "app-dir", "restart"]
    assert isinstance(tasks["app-dir"], FileTask)
    assert tasks["app-dir"].mode == 0o755
    assert tasks["app-config"].contents == "listen = 8080\n"
    assert isinstance(tasks["restart"], CommandTask)
    assert tasks["restart"].command == ["systemctl", "restart", "app"]
    image = tasks["LoadImage.0"]
    assert isinstance(image, LoadImageTask)
    assert image.cache_dir == "/var/cache/images"
    assert check_graph(tasks)["restart"] == {"app-config"}


def test_load_json_manifest(tmp_path: Path):
    path = tmp_path / "node.json"
    path.write_text(json.dumps({"tasks": {"hello": {"kind": "command", "command": ["echo", "hi"]}}}))
    tasks = load_manifest(path)
    assert tasks["hello"].command == ["echo", "hi"]


def test_missing_manifest(tmp_path: Path):
    with pytest.raises(ManifestError, match="Manifest not found"):
        load_manifest(tmp_path / "absent.yaml")


def test_unparseable_manifest(tmp_path: Path):
    path = tmp_path / "broken.yaml"
    path.write_text("tasks: [unclosed\n")
    with pytest.raises(ManifestError, match="Error loading manifest"):
        load_manifest(path)


def test_empty_manifest_has_no_tasks(tmp_path: Path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_manifest(path) == {}


@pytest.mark.parametrize(
    "data, message",
    [
        ({"tasks": {"x": {"kind": "service"}}}, "unknown kind 'service'"),
        ({"tasks": {"x": {"path": "/etc/x"}}}, "Invalid manifest"),
        ({"tasks": {"x": {"kind": "file", "path": "relative"}}}, "must be absolute"),
        ({"tasks": {"x": {"kind": "file", "path": "/x", "contents": 8080}}}, "contents must be a string"),
        ({"tasks": {"x": {"kind": "file", "path": "/x", "colour": "red"}}}, "Task 'x' \\(file\\)"),
        ({"tasks": {}, "extra": 1}, "Invalid manifest"),
        ({"images": [{"source": "https://example.com/x.tar", "hash": "nothex"}]}, "Image 0"),
    ],
)
def test_invalid_manifests(data, message):
    with pytest.raises(ManifestError, match=message):
        build_tasks(data)


def test_image_names_are_reserved():
    data = {
        "tasks": {"LoadImage.0": {"kind": "command", "command": "true"}},
        "images": [{"source": "/images/x.tar", "hash": SHA}],
    }
    with pytest.raises(ManifestError, match="reserved"):
        build_tasks(data)


def test_image_cache_dir_override():
    data = {"images": [{"source": "/images/x.tar", "hash": SHA}], "image_cache_dir": "/from/manifest"}
    assert build_tasks(data)["LoadImage.0"].cache_dir == "/from/manifest"
    assert build_tasks(data, image_cache_dir="/from/cli")["LoadImage.0"].cache_dir == "/from/cli"
