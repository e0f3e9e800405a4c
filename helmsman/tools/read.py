"""Read tool for reading file contents."""

import asyncio
from pathlib import Path

from helmsman.exceptions import ToolError
from helmsman.logging import get_logger
from helmsman.tools.registry import Tool
from helmsman.tools.schema import ParamField, ToolParams

log = get_logger(__name__)

MAX_LINES = 2000
MAX_BYTES = 50 * 1024


def _truncate_utf8(text: str, max_bytes: int) -> tuple[str, bool]:
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text, False
    return encoded[:max_bytes].decode("utf-8", errors="ignore"), True


class ReadParams(ToolParams):
    path: str = ParamField(description="Path to the file to read (relative or absolute)", min_length=1)
    offset: int = ParamField(0, description="Line number to start reading from (1-indexed)")
    limit: int = ParamField(0, description="Maximum number of lines to read")


class ReadTool(Tool):
    """Read file contents."""

    name = "read"
    description = (
        f"Read a text file. Output is capped at {MAX_LINES} lines or {MAX_BYTES // 1024}KB; "
        "use offset and limit to page through large files."
    )
    params_model = ReadParams
    timeout_seconds = 30.0

    async def execute(self, params: ReadParams, abort_event: asyncio.Event) -> str:
        file_path = Path(params.path).expanduser()
        if not file_path.exists():
            raise ToolError(ToolError.FILE_NOT_FOUND, "File does not exist", {"path": str(file_path)})
        if file_path.is_dir():
            raise ToolError("IS_DIRECTORY", "Path points to a directory, not a file", {"path": str(file_path)})

        try:
            raw = await asyncio.to_thread(file_path.read_bytes)
        except OSError as e:
            log.error("Read failed", path=str(file_path), error=str(e))
            raise ToolError("READ_ERROR", "Error reading file", {"error": str(e)}) from e

        text = raw.decode("utf-8", errors="replace").replace("\r\n", "\n").replace("\r", "\n")
        lines = text.split("\n")
        total = len(lines)

        start = max(params.offset, 1)
        if start > total:
            raise ToolError(
                "INVALID_OFFSET",
                "Offset is beyond end of file",
                {"offset": start, "total_lines": total},
            )
        limit = params.limit if params.limit > 0 else MAX_LINES
        end = min(start + limit - 1, total)

        selected, truncated = _truncate_utf8("\n".join(lines[start - 1:end]), MAX_BYTES)
        if end >= total and not truncated:
            return selected

        next_offset = end + 1
        if next_offset > total:
            return f"{selected}\n\n[Showing lines {start}-{end} of {total}.]"
        if truncated:
            return (
                f"{selected}\n\n[Output truncated at {MAX_BYTES // 1024}KB. "
                f"Showing lines {start}-{end} of {total}. Use offset={next_offset} to continue.]"
            )
        return f"{selected}\n\n[Showing lines {start}-{end} of {total}. Use offset={next_offset} to continue.]"
