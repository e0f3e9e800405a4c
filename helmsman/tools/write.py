"""Write tool for creating or overwriting files."""

import asyncio
from pathlib import Path

from helmsman.exceptions import ToolError
from helmsman.logging import get_logger
from helmsman.tools.registry import Tool
from helmsman.tools.schema import ParamField, ToolParams

log = get_logger(__name__)


class WriteParams(ToolParams):
    path: str = ParamField(description="Path of the file to write", min_length=1)
    content: str = ParamField(description="Full file content")


def _write(path: Path, content: str) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    return path.write_text(content, encoding="utf-8")


class WriteTool(Tool):
    """Write content to a file, creating parent directories."""

    name = "write"
    description = "Write content to a file. Creates the file and missing parent directories, overwriting existing content."
    params_model = WriteParams
    timeout_seconds = 30.0

    async def execute(self, params: WriteParams, abort_event: asyncio.Event) -> str:
        file_path = Path(params.path).expanduser()
        if file_path.is_dir():
            raise ToolError("IS_DIRECTORY", "Path points to a directory", {"path": str(file_path)})
        try:
            written = await asyncio.to_thread(_write, file_path, params.content)
        except OSError as e:
            log.error("Write failed", path=str(file_path), error=str(e))
            raise ToolError("WRITE_ERROR", "Error writing file", {"error": str(e)}) from e
        log.info("Wrote file", path=str(file_path), chars=written)
        return f"Wrote {written} characters to {file_path}"
