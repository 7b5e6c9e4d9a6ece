"""Files and directories on the node."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Union

from ..delta import DeltaTask
from ..targets.base import Target
from ..task import dependency
from .registry import task_registry

if TYPE_CHECKING:
    from ..context import ConvergeContext

FILE_TYPE_FILE = "file"
FILE_TYPE_DIRECTORY = "directory"
_VALID_TYPES = (FILE_TYPE_FILE, FILE_TYPE_DIRECTORY)


def parse_mode(mode: Union[int, str, None]) -> Optional[int]:
    """Accept ``0o644``, ``420`` or the string ``"0644"``."""
    if mode is None or isinstance(mode, int):
        return mode
    text = str(mode).strip()
    if not text:
        return None
    try:
        return int(text, 8)
    except ValueError as exc:
        raise ValueError(f"Invalid file mode {mode!r}; expected an octal string such as '0644'") from exc


@task_registry.register("file")
@dataclass
class FileTask(DeltaTask):
    """A file with given contents, or a directory, at an absolute path."""

    path: str = ""
    contents: Optional[str] = None
    mode: Optional[int] = None
    type: str = FILE_TYPE_FILE
    depends_on: list[Any] = dependency(default=[])

    compare_fields = ("type", "contents", "mode")

    def __post_init__(self) -> None:
        if not isinstance(self.path, str) or not self.path.startswith("/"):
            raise ValueError(f"FileTask path must be absolute, got {self.path!r}")
        if self.type not in _VALID_TYPES:
            raise ValueError(f"FileTask type must be one of {', '.join(_VALID_TYPES)}, got {self.type!r}")
        if self.contents is not None and not isinstance(self.contents, str):
            raise ValueError(f"FileTask contents must be a string, got {type(self.contents).__name__}")
        self.mode = parse_mode(self.mode)
        if self.type == FILE_TYPE_FILE and self.contents is None:
            self.contents = ""

    @classmethod
    def from_spec(cls, name: str, params: dict[str, Any]) -> "FileTask":
        return cls(**params)

    def find(self, ctx: "ConvergeContext") -> Optional["FileTask"]:
        target = ctx.target
        if target.is_directory(self.path):
            return FileTask(path=self.path, type=FILE_TYPE_DIRECTORY, mode=target.file_mode(self.path))
        data = target.read_file(self.path)
        if data is None:
            return None
        return FileTask(
            path=self.path,
            type=FILE_TYPE_FILE,
            contents=data.decode("utf-8", errors="surrogateescape"),
            mode=target.file_mode(self.path),
        )

    def check_changes(self, actual: Optional[DeltaTask], changes: dict[str, tuple[Any, Any]]) -> None:
        if actual is not None and "type" in changes:
            have, want = changes["type"]
            raise ValueError(f"Cannot change {self.path} from {have} to {want}")

    def apply(
        self,
        target: Target,
        actual: Optional[DeltaTask],
        changes: dict[str, tuple[Any, Any]],
        ctx: "ConvergeContext",
    ) -> None:
        if self.type == FILE_TYPE_DIRECTORY:
            target.ensure_directory(self.path, mode=self.mode)
            return
        data = (self.contents or "").encode("utf-8", errors="surrogateescape")
        target.write_file(self.path, data, mode=self.mode)
