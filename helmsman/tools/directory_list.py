"""Directory listing tool."""

import asyncio
import fnmatch
import time
from pathlib import Path

from helmsman.exceptions import ToolError
from helmsman.tools.registry import Tool
from helmsman.tools.schema import ParamField, ToolParams


class DirectoryListParams(ToolParams):
    path: str = ParamField(".", description="Directory to list (default: current directory)")
    pattern: str = ParamField("", description="Glob filter on entry names (e.g. '*.py')")
    recursive: bool = ParamField(False, description="Descend into subdirectories")
    show_hidden: bool = ParamField(False, description="Include entries starting with '.'")
    show_details: bool = ParamField(False, description="Include size and modification time")
    max_entries: int = ParamField(500, description="Maximum entries to return", minimum=1, maximum=10000)


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{int(value)}{unit}" if unit == "B" else f"{value:.1f}{unit}"
        value /= 1024
    return f"{size}B"


def _list(root: Path, params: DirectoryListParams) -> tuple[list[str], bool]:
    entries: list[str] = []
    iterator = root.rglob("*") if params.recursive else root.iterdir()
    for entry in sorted(iterator):
        relative = entry.relative_to(root)
        if not params.show_hidden and any(part.startswith(".") for part in relative.parts):
            continue
        if params.pattern and not fnmatch.fnmatch(entry.name, params.pattern):
            continue
        if len(entries) >= params.max_entries:
            return entries, True
        label = f"{relative}/" if entry.is_dir() else str(relative)
        if params.show_details:
            stat = entry.stat()
            modified = time.strftime("%Y-%m-%d %H:%M", time.localtime(stat.st_mtime))
            size = "-" if entry.is_dir() else _format_size(stat.st_size)
            label = f"{label}  {size}  {modified}"
        entries.append(label)
    return entries, False


class DirectoryListTool(Tool):
    """List directory contents."""

    name = "directory_list"
    description = "List files and directories, optionally recursively and filtered by a glob pattern."
    params_model = DirectoryListParams
    timeout_seconds = 60.0

    async def execute(self, params: DirectoryListParams, abort_event: asyncio.Event) -> str:
        root = Path(params.path or ".").expanduser()
        if not root.exists():
            raise ToolError(ToolError.FILE_NOT_FOUND, "Directory does not exist", {"path": str(root)})
        if not root.is_dir():
            raise ToolError("NOT_A_DIRECTORY", "Path is not a directory", {"path": str(root)})

        try:
            entries, truncated = await asyncio.to_thread(_list, root, params)
        except OSError as e:
            raise ToolError("ACCESS_ERROR", "Cannot list directory", {"error": str(e)}) from e

        if not entries:
            return f"No entries found in {root}"
        header = f"{root} ({len(entries)} entries{', truncated' if truncated else ''}):"
        return "\n".join([header, *entries])
