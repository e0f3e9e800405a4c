"""Edit tool for exact text replacement in files."""

import asyncio
from pathlib import Path

from helmsman.exceptions import ToolError
from helmsman.logging import get_logger
from helmsman.tools.registry import Tool
from helmsman.tools.schema import ParamField, ToolParams

log = get_logger(__name__)


class EditParams(ToolParams):
    path: str = ParamField(description="Path of the file to edit", min_length=1)
    old_text: str = ParamField(
        "",
        description="Exact text to replace; must occur exactly once. Empty creates a new file.",
        alias="oldText",
    )
    new_text: str = ParamField(description="Replacement text", alias="newText")


class EditTool(Tool):
    """Replace one exact occurrence of text in a file."""

    name = "edit"
    description = (
        "Edit a file by replacing an exact, unique occurrence of oldText with newText. "
        "With an empty oldText the file is created with newText as content."
    )
    params_model = EditParams
    timeout_seconds = 30.0

    async def execute(self, params: EditParams, abort_event: asyncio.Event) -> str:
        file_path = Path(params.path).expanduser()

        if not params.old_text:
            if file_path.exists():
                raise ToolError("FILE_EXISTS", "oldText is empty but the file already exists", {"path": str(file_path)})
            await asyncio.to_thread(file_path.parent.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(file_path.write_text, params.new_text, encoding="utf-8")
            return f"Created {file_path}"

        if not file_path.is_file():
            raise ToolError(ToolError.FILE_NOT_FOUND, "File does not exist", {"path": str(file_path)})

        text = await asyncio.to_thread(file_path.read_text, encoding="utf-8")
        occurrences = text.count(params.old_text)
        if occurrences == 0:
            raise ToolError("TEXT_NOT_FOUND", "oldText was not found in the file", {"path": str(file_path)})
        if occurrences > 1:
            raise ToolError(
                "TEXT_NOT_UNIQUE",
                "oldText occurs more than once; include more context",
                {"path": str(file_path), "occurrences": occurrences},
            )

        await asyncio.to_thread(
            file_path.write_text, text.replace(params.old_text, params.new_text, 1), encoding="utf-8"
        )
        log.info("Edited file", path=str(file_path))
        return f"Edited {file_path}: replaced 1 occurrence"
