"""Shell executor and the built-in ``bash`` tool."""

import asyncio
import os
import shutil
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from agent_loop.config import ShellToolConfig
from agent_loop.exceptions import ToolBlockedError
from agent_loop.logging import get_logger
from agent_loop.tools.registry import Tool, ToolResult
from agent_loop.tools.safety import BLOCKED_SENTINEL, ensure_allowed

log = get_logger(__name__)

NO_OUTPUT = "(no output)"
DEFAULT_MAX_OUTPUT_CHARS = 50000


@dataclass
class CommandOutput:
    """Text reported for one command plus how the process ended."""

    text: str
    returncode: int | None = None
    blocked: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        try:
            process.kill()
        except ProcessLookupError:
            pass


def _describe_exit(returncode: int) -> str:
    if returncode < 0:
        try:
            return f"Error: signal: {signal.Signals(-returncode).name}"
        except ValueError:
            return f"Error: signal: {-returncode}"
    return f"Error: exit status {returncode}"


def shape_output(
    raw: str,
    returncode: int | None,
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
    truncation_marker: str = "",
    error: str | None = None,
) -> str:
    """Apply the output policy to combined stdout/stderr text.

    Whitespace is trimmed first. A failure with nothing printed reports the
    process error, a clean run with nothing printed reports ``(no output)``,
    and anything longer than ``max_output_chars`` is cut to exactly that
    length before ``truncation_marker`` is appended.
    """
    text = raw.strip()
    if not text and (error or (returncode is not None and returncode != 0)):
        text = f"Error: {error}" if error else _describe_exit(returncode)
    if not text:
        text = NO_OUTPUT
    if max_output_chars > 0 and len(text) > max_output_chars:
        text = text[:max_output_chars] + truncation_marker
    return text


async def run_command(
    command: str,
    cwd: Path | str | None = None,
    *,
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
    truncation_marker: str = "",
    timeout: float | None = None,
    executable: str | None = None,
    abort_event: asyncio.Event | None = None,
) -> CommandOutput:
    """Run *command* in a subshell and capture stdout and stderr as one stream.

    Args:
        command: Shell command text
        cwd: Working directory, the process's current directory when empty
        max_output_chars: Output cap in characters
        truncation_marker: Text appended after truncated output
        timeout: Seconds before the process group is killed
        executable: Shell binary, bash when available
        abort_event: Kills the process group when set

    Returns:
        CommandOutput with the shaped text and exit code
    """
    if abort_event is not None and abort_event.is_set():
        return CommandOutput(text="Error: Command aborted")

    shell = executable or shutil.which("bash") or None
    workdir = str(cwd) if cwd else None

    try:
        log.info("Executing shell command", command=command, cwd=workdir, timeout=timeout)
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=workdir,
            executable=shell,
            start_new_session=True,
        )
    except OSError as e:
        log.error("Shell command failed to start", command=command, error=str(e))
        text = shape_output("", None, max_output_chars, truncation_marker, error=str(e))
        return CommandOutput(text=text)

    communicate_task = asyncio.create_task(process.communicate())
    abort_wait_task: asyncio.Task[bool] | None = None
    if abort_event is not None:
        abort_wait_task = asyncio.create_task(abort_event.wait())
    try:
        wait_tasks: set[asyncio.Task[Any]] = {communicate_task}
        if abort_wait_task is not None:
            wait_tasks.add(abort_wait_task)
        done, _ = await asyncio.wait(
            wait_tasks,
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if communicate_task in done:
            stdout, _ = await communicate_task
        else:
            _kill_process_group(process)
            await process.wait()
            communicate_task.cancel()
            try:
                await communicate_task
            except asyncio.CancelledError:
                pass
            if abort_wait_task is not None and abort_wait_task in done:
                return CommandOutput(text="Error: Command aborted", returncode=process.returncode)
            return CommandOutput(
                text=f"Error: Command timed out after {timeout:g}s",
                returncode=process.returncode,
            )
    except asyncio.CancelledError:
        _kill_process_group(process)
        await process.wait()
        communicate_task.cancel()
        raise
    finally:
        if abort_wait_task is not None and not abort_wait_task.done():
            abort_wait_task.cancel()
            try:
                await abort_wait_task
            except asyncio.CancelledError:
                pass

    raw = (stdout or b"").decode("utf-8", errors="replace")
    text = shape_output(raw, process.returncode, max_output_chars, truncation_marker)
    return CommandOutput(text=text, returncode=process.returncode)


async def run_bash(
    command: str,
    cwd: Path | str | None = None,
    config: ShellToolConfig | None = None,
    abort_event: asyncio.Event | None = None,
) -> CommandOutput:
    """Check *command* against the blocklist, then run it.

    A blocked command is never spawned and reports ``BLOCKED_SENTINEL``.
    """
    config = config or ShellToolConfig()
    try:
        ensure_allowed(command, config.blocked)
    except ToolBlockedError as e:
        log.warning("Blocked dangerous command", command=command, reason=e.reason)
        return CommandOutput(text=BLOCKED_SENTINEL, blocked=True)

    return await run_command(
        command,
        cwd,
        max_output_chars=config.max_output_chars,
        truncation_marker=config.truncation_marker,
        timeout=float(config.timeout) if config.timeout else None,
        executable=config.executable or None,
        abort_event=abort_event,
    )


class ShellTool(Tool):
    """Run shell commands behind the command safety gate."""

    name = "bash"
    description = "Run a shell command."
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute",
            },
        },
        "required": ["command"],
    }

    def __init__(self, config: ShellToolConfig | None = None, working_dir: Path | str | None = None):
        self.config = config or ShellToolConfig()
        self.working_dir = Path(working_dir).expanduser() if working_dir else None
        # The registry ceiling sits above the shell timeout so the shell reports its own.
        self.timeout_seconds = float(self.config.timeout) + 5.0 if self.config.timeout else None

    async def execute(self, command: Any = None, **kwargs: Any) -> ToolResult:
        """Execute a shell command.

        Args:
            command: Shell command to execute

        Returns:
            ToolResult whose content is the text reported to the model
        """
        if not isinstance(command, str):
            return ToolResult(success=False, error="Missing required argument: command")

        abort_event = kwargs.get("_abort_event")
        if not isinstance(abort_event, asyncio.Event):
            abort_event = None

        output = await run_bash(command, self.working_dir, self.config, abort_event=abort_event)
        return ToolResult(success=output.success, content=output.text)
