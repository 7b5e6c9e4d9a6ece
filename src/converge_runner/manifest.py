"""Turn a declarative task manifest into the name -> Task map a run consumes.

Example::

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
    images:
      - source: https://example.com/pause.tar
        hash: <sha256>

Images become ``LoadImage.<index>`` tasks.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .constants import IMAGE_TASK_PREFIX
from .errors import ManifestError
from .io_utils import _load_data_with_error
from .task import Task
from .tasks import LoadImageTask, TaskRegistry, task_registry
from .tasks.image import DEFAULT_IMAGE_CACHE_DIR


class TaskSpec(BaseModel):
    """One task declaration; fields other than ``kind`` go to the task class."""

    model_config = ConfigDict(extra="allow")

    kind: str = Field(min_length=1)
    depends_on: list[str] = Field(default_factory=list)


class ImageSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: str = Field(min_length=1)
    hash: str = Field(min_length=1)


class Manifest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tasks: dict[str, TaskSpec] = Field(default_factory=dict)
    images: list[ImageSpec] = Field(default_factory=list)
    image_cache_dir: Optional[str] = None


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def build_tasks(
    data: Mapping[str, Any],
    registry: Optional[TaskRegistry] = None,
    image_cache_dir: Optional[str] = None,
) -> dict[str, Task]:
    """Validate manifest data and instantiate its tasks.

    ``image_cache_dir`` overrides the manifest's own ``image_cache_dir``.

    Raises:
        ManifestError: On schema errors, unknown kinds or invalid task fields.
    """
    registry = registry or task_registry
    try:
        manifest = Manifest.model_validate(dict(data))
    except ValidationError as exc:
        raise ManifestError(f"Invalid manifest: {_format_validation_error(exc)}") from exc

    tasks: dict[str, Task] = {}
    for name, spec in manifest.tasks.items():
        if not name.strip():
            raise ManifestError("Task names must be non-empty")
        if not registry.has(spec.kind):
            raise ManifestError(
                f"Task '{name}' has unknown kind '{spec.kind}' (registered: {', '.join(registry.list_kinds())})"
            )
        params = spec.model_dump(exclude={"kind"})
        try:
            tasks[name] = registry.create(spec.kind, name, params)
        except (TypeError, ValueError) as exc:
            raise ManifestError(f"Task '{name}' ({spec.kind}): {exc}") from exc

    cache_dir = image_cache_dir or manifest.image_cache_dir or DEFAULT_IMAGE_CACHE_DIR
    for index, image in enumerate(manifest.images):
        name = f"{IMAGE_TASK_PREFIX}{index}"
        if name in tasks:
            raise ManifestError(f"Task name '{name}' is reserved for images")
        try:
            tasks[name] = LoadImageTask(source=image.source, hash=image.hash, cache_dir=cache_dir)
        except ValueError as exc:
            raise ManifestError(f"Image {index}: {exc}") from exc

    logger.debug("Loaded {} task(s) from manifest", len(tasks))
    return tasks


def load_manifest(
    path: Path,
    registry: Optional[TaskRegistry] = None,
    image_cache_dir: Optional[str] = None,
) -> dict[str, Task]:
    """Read a YAML or JSON manifest file and build its tasks."""
    path = Path(path)
    if not path.exists():
        raise ManifestError(f"Manifest not found: {path}")
    data, err = _load_data_with_error(path, {})
    if err:
        raise ManifestError(f"Error loading manifest {path}: {err}")
    return build_tasks(data, registry=registry, image_cache_dir=image_cache_dir)
