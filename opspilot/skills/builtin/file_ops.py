"""File operations skill."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from opspilot.skills.base import BaseSkill, ParamSpec, ParamType, SkillCategory, Tool, ToolExecutionError
from opspilot.utils import get_logger, safe_json_dumps

logger = get_logger(__name__)


class FileOpsSkill(BaseSkill):
    """Read, write and list files below a base directory.

    Reads and listings are safe; ``write_file`` needs confirmation.

    Example:
        >>> skill = FileOpsSkill(base_path="/etc/nginx")
        >>> text = await skill.read_file({"path": "nginx.conf"})
    """

    id = "skill-file-ops"
    name = "File Operations"
    description = "Read, write, and list files on the local host"
    icon = "📁"
    category = SkillCategory.SERVER

    def __init__(
        self,
        base_path: str = ".",
        allowed_extensions: list[str] | None = None,
        max_read_length: int = 50000,
    ):
        """Initialize file operations skill.

        Args:
            base_path: Base directory for file operations
            allowed_extensions: Allowed file extensions (None = all)
            max_read_length: Max characters returned by read_file
        """
        self.base_path = Path(base_path).resolve()
        self.allowed_extensions = allowed_extensions
        self.max_read_length = max_read_length

    def get_tools(self) -> list[Tool]:
        return [
            Tool(
                name="read_file",
                description="Read the contents of a text file",
                parameters={
                    "path": ParamSpec(description="Path to the file (relative to base path)", required=True),
                },
                execute=self.read_file,
            ),
            Tool(
                name="write_file",
                description="Write content to a file, creating it if needed",
                dangerous=True,
                parameters={
                    "path": ParamSpec(description="Path to the file (relative to base path)", required=True),
                    "content": ParamSpec(description="Content to write", required=True),
                    "append": ParamSpec(
                        type=ParamType.BOOLEAN,
                        description="Append to the file instead of overwriting",
                    ),
                },
                execute=self.write_file,
            ),
            Tool(
                name="list_directory",
                description="List files and directories in a path",
                parameters={
                    "path": ParamSpec(description="Directory path (relative to base path, default '.')"),
                },
                execute=self.list_directory,
            ),
        ]

    def _resolve_path(self, path: str) -> Path:
        """Resolve a relative path and keep it inside the base path."""
        resolved = (self.base_path / path).resolve()
        if resolved != self.base_path and self.base_path not in resolved.parents:
            raise ToolExecutionError(f"Path escapes the base directory: {path}")
        return resolved

    def _check_extension(self, path: Path) -> None:
        if self.allowed_extensions is not None and path.suffix.lstrip(".") not in self.allowed_extensions:
            raise ToolExecutionError(f"File extension not allowed: {path.suffix}")

    async def read_file(self, arguments: dict[str, Any]) -> str:
        path_str = arguments.get("path", "")
        path = self._resolve_path(path_str)

        if not path.exists():
            raise ToolExecutionError(f"File not found: {path_str}")
        if not path.is_file():
            raise ToolExecutionError(f"Not a file: {path_str}")
        self._check_extension(path)

        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ToolExecutionError(f"Failed to read file: {e}") from e

        if len(content) > self.max_read_length:
            content = content[:self.max_read_length] + "\n... (content truncated)"
        return content

    async def write_file(self, arguments: dict[str, Any]) -> str:
        path_str = arguments.get("path", "")
        content = arguments.get("content", "")
        append = bool(arguments.get("append", False))

        path = self._resolve_path(path_str)
        self._check_extension(path)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a" if append else "w", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            raise ToolExecutionError(f"Failed to write file: {e}") from e

        logger.info("Wrote file", extra={"path": str(path), "append": append})
        return safe_json_dumps({"path": path_str, "bytes_written": len(content.encode("utf-8"))})

    async def list_directory(self, arguments: dict[str, Any]) -> str:
        path_str = arguments.get("path") or "."
        path = self._resolve_path(path_str)

        if not path.exists():
            raise ToolExecutionError(f"Directory not found: {path_str}")
        if not path.is_dir():
            raise ToolExecutionError(f"Not a directory: {path_str}")

        items = []
        for item in sorted(path.iterdir()):
            items.append({
                "name": item.name,
                "type": "directory" if item.is_dir() else "file",
                "size": item.stat().st_size if item.is_file() else None,
            })

        return safe_json_dumps({"path": path_str, "items": items})
