"""Built-in task kinds.  Importing this package registers them."""

from .command import CommandTask
from .file import FileTask, parse_mode
from .image import LoadImageTask
from .registry import TaskRegistry, task_registry

__all__ = [
    "CommandTask",
    "FileTask",
    "LoadImageTask",
    "TaskRegistry",
    "parse_mode",
    "task_registry",
]
