"""Bash tool for executing allow-listed shell commands."""

import asyncio
import re
import shlex
import time
from pathlib import Path
from typing import Any

from helmsman.config import get_config
from helmsman.exceptions import ToolError
from helmsman.logging import get_logger
from helmsman.tools.registry import Tool
from helmsman.tools.schema import ParamField, ToolParams

log = get_logger(__name__)

DEFAULT_TIMEOUT = 30
MAX_OUTPUT_CHARS = 10000

_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=.*$")
_SHELL_SEPARATOR_TOKENS = {";", "&&", "||", "|", "&"}
_SHELL_WRAPPER_TOKENS = {"sudo", "command", "builtin", "nohup", "time"}


def _split_shell_segments(command: str) -> list[list[str]]:
    """Tokenize a command and split it at control operators."""
    lexer = shlex.shlex(command, posix=True, punctuation_chars=";&|")
    lexer.whitespace_split = True
    lexer.commenters = ""
    segments: list[list[str]] = []
    current: list[str] = []
    for token in lexer:
        if token in _SHELL_SEPARATOR_TOKENS:
            if current:
                segments.append(current)
                current = []
            continue
        current.append(token)
    if current:
        segments.append(current)
    return segments


def extract_shell_base_commands(command: str) -> list[str]:
    """Executable name of every pipeline/list segment in ``command``."""
    cleaned = (command or "").strip()
    if not cleaned:
        return []
    try:
        segments = _split_shell_segments(cleaned)
    except ValueError:
        return []
    commands = []
    for segment in segments:
        for token in segment:
            if token in _SHELL_WRAPPER_TOKENS or (_ASSIGNMENT_RE.match(token) and "/" not in token):
                continue
            commands.append(Path(token).name)
            break
    return commands


def _truncate(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    return text[:MAX_OUTPUT_CHARS] + f"\n... [truncated, {len(text)} total chars]"


class BashParams(ToolParams):
    command: str = ParamField(description="Bash command to execute")
    timeout: int = ParamField(
        DEFAULT_TIMEOUT,
        description="Timeout in seconds (optional, default 30, max 300)",
    )


class BashTool(Tool):
    """Execute shell commands."""

    name = "bash"
    description = (
        "Execute a bash command and return its output and exit code. "
        "Only read-only utilities are allowed unless the assistant runs in yolo mode."
    )
    params_model = BashParams

    def __init__(self, allowed_commands: list[str] | None = None, allow_all: bool | None = None):
        shell_cfg = get_config().tools.shell
        self.allowed_commands = list(allowed_commands if allowed_commands is not None else shell_cfg.allowed_commands)
        self.allow_all = shell_cfg.yolo if allow_all is None else allow_all
        self.max_timeout = int(shell_cfg.max_timeout)
        self.default_timeout = int(shell_cfg.timeout or DEFAULT_TIMEOUT)

    def effective_timeout(self, requested: int) -> int:
        if requested <= 0 or requested > self.max_timeout:
            return self.default_timeout
        return requested

    def deadline_for(self, params: BashParams) -> float:
        # The tool enforces its own timeout; leave it room to report it.
        return self.effective_timeout(params.timeout) + 5.0

    def _check_allowed(self, command: str) -> None:
        if self.allow_all:
            return
        base_commands = extract_shell_base_commands(command)
        if not base_commands:
            raise ToolError(ToolError.VALIDATION_FAILED, "Command is not parseable", {"command": command})
        for base in base_commands:
            if base not in self.allowed_commands:
                raise ToolError(
                    ToolError.COMMAND_NOT_ALLOWED,
                    "Command is not in the allowed list (run with --yolo to allow any command)",
                    {"command": base, "allowed": ", ".join(self.allowed_commands)},
                )

    @staticmethod
    async def _stop(process: asyncio.subprocess.Process, communicate_task: asyncio.Task[Any]) -> None:
        if process.returncode is None:
            process.kill()
        await process.wait()
        communicate_task.cancel()
        try:
            await communicate_task
        except asyncio.CancelledError:
            pass

    async def execute(self, params: BashParams, abort_event: asyncio.Event) -> str:
        command = params.command.strip()
        if not command:
            raise ToolError(ToolError.VALIDATION_FAILED, "Command cannot be empty")
        self._check_allowed(command)
        timeout = self.effective_timeout(params.timeout)

        if abort_event.is_set():
            raise ToolError(ToolError.EXECUTION_CANCELLED, "Command was cancelled", {"command": command})

        log.info("Executing shell command", command=command, timeout=timeout)
        started = time.monotonic()
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        communicate_task = asyncio.create_task(process.communicate())
        abort_wait_task = asyncio.create_task(abort_event.wait())
        try:
            done, _ = await asyncio.wait(
                {communicate_task, abort_wait_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if communicate_task in done:
                stdout, stderr = communicate_task.result()
            elif abort_wait_task in done:
                await self._stop(process, communicate_task)
                raise ToolError(ToolError.EXECUTION_CANCELLED, "Command was cancelled", {"command": command})
            else:
                await self._stop(process, communicate_task)
                raise ToolError(
                    ToolError.EXECUTION_TIMEOUT,
                    f"Command timed out after {timeout} seconds",
                    {"command": command, "timeout_seconds": timeout},
                )
        except asyncio.CancelledError:
            await self._stop(process, communicate_task)
            raise
        finally:
            if not abort_wait_task.done():
                abort_wait_task.cancel()
                try:
                    await abort_wait_task
                except asyncio.CancelledError:
                    pass

        duration = time.monotonic() - started
        lines = [f"Command: {command}", f"Duration: {duration:.3f}s", ""]
        stdout_text = _truncate(stdout.decode("utf-8", errors="replace"))
        stderr_text = _truncate(stderr.decode("utf-8", errors="replace"))
        if stdout_text:
            lines.append("Output:")
            lines.append(stdout_text.rstrip("\n"))
        if stderr_text:
            lines.append("")
            lines.append("Error Output:")
            lines.append(stderr_text.rstrip("\n"))
        lines.append("")
        lines.append(f"Exit Code: {process.returncode}")

        return "\n".join(lines)
