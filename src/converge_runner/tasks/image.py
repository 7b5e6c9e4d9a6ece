"""Container images fetched from a URL or path and loaded into docker."""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loguru import logger

from ..task import Task, dependency
from .registry import task_registry

if TYPE_CHECKING:
    from ..context import ConvergeContext

DEFAULT_IMAGE_CACHE_DIR = "/var/cache/converge/images"

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")


@task_registry.register("load_image")
@dataclass
class LoadImageTask(Task):
    """Download an image archive, verify its sha256 and ``docker load`` it.

    A marker file next to the cached archive records a completed load, so a
    converged host does not reload the image on every run.
    """

    source: str = ""
    hash: str = ""
    cache_dir: str = DEFAULT_IMAGE_CACHE_DIR
    depends_on: list[Any] = dependency(default=[])

    def __post_init__(self) -> None:
        if not self.source:
            raise ValueError("LoadImageTask requires a source")
        self.hash = (self.hash or "").strip().lower()
        if not _SHA256_RE.match(self.hash):
            raise ValueError(f"LoadImageTask hash must be a sha256 hex digest, got {self.hash!r}")

    @classmethod
    def from_spec(cls, name: str, params: dict[str, Any]) -> "LoadImageTask":
        return cls(**params)

    @property
    def archive_path(self) -> str:
        return f"{self.cache_dir.rstrip('/')}/{self.hash}.tar"

    @property
    def marker_path(self) -> str:
        return f"{self.archive_path}.loaded"

    def load_script(self) -> str:
        archive = shlex.quote(self.archive_path)
        partial = shlex.quote(self.archive_path + ".download")
        check = f"echo {shlex.quote(self.hash + '  ' + self.archive_path)} | sha256sum -c --status"
        if self.source.startswith("/"):
            fetch = f"cp {shlex.quote(self.source)} {partial}"
        else:
            fetch = f"curl -fsSL -o {partial} {shlex.quote(self.source)}"
        return (
            f"if ! {check} 2>/dev/null; then {fetch} && mv {partial} {archive}; fi; "
            f"{check} && docker load -i {archive}"
        )

    def run(self, ctx: "ConvergeContext") -> None:
        target = ctx.target
        if ctx.check_existing and target.path_exists(self.marker_path):
            logger.debug("Image {} already loaded", self.hash[:12])
            return
        target.ensure_directory(self.cache_dir)
        target.run_command(["sh", "-c", self.load_script()])
        target.write_file(self.marker_path, self.source + "\n", mode=0o644)
