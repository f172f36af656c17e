import asyncio

import pytest

from agent_loop.config import ShellToolConfig
from agent_loop.tools.safety import BLOCKED_SENTINEL
from agent_loop.tools.shell import NO_OUTPUT, ShellTool, run_bash, run_command, shape_output


@pytest.mark.asyncio
async def test_simple_command():
    out = await run_bash("echo hello")
    assert out.text == "hello"
    assert out.success is True


@pytest.mark.asyncio
async def test_multi_line_output():
    out = await run_bash("printf 'a\\nb\\nc'")
    assert out.text == "a\nb\nc"


@pytest.mark.asyncio
async def test_no_output_sentinel():
    out = await run_bash("true")
    assert out.text == NO_OUTPUT == "(no output)"


@pytest.mark.asyncio
async def test_stderr_is_captured():
    out = await run_bash("echo error_msg >&2")
    assert out.text == "error_msg"


@pytest.mark.asyncio
async def test_failure_with_output_returns_output():
    out = await run_bash("echo partial; exit 3")
    assert out.text == "partial"
    assert out.returncode == 3
    assert out.success is False


@pytest.mark.asyncio
async def test_failure_without_output_describes_exit():
    out = await run_bash("exit 2")
    assert out.text == "Error: exit status 2"


@pytest.mark.asyncio
async def test_command_not_found_reports_error():
    out = await run_bash("nonexistent_command_xyz_12345")
    assert "not found" in out.text or "Error" in out.text
    assert out.success is False


@pytest.mark.asyncio
async def test_output_truncated_to_exact_cap():
    out = await run_bash("head -c 60000 /dev/zero | tr '\\0' x")
    assert len(out.text) == 50000


@pytest.mark.asyncio
async def test_truncation_marker_variant():
    config = ShellToolConfig(max_output_chars=4000, truncation_marker="\n... (truncated)")
    out = await run_bash("head -c 5000 /dev/zero | tr '\\0' y", config=config)
    assert out.text == "y" * 4000 + "\n... (truncated)"


@pytest.mark.asyncio
async def test_blocked_command_never_spawns(tmp_path):
    marker = tmp_path / "marker.txt"
    out = await run_bash(f"sudo touch {marker}", cwd=tmp_path)
    assert out.text == BLOCKED_SENTINEL
    assert out.blocked is True
    assert not marker.exists()


@pytest.mark.asyncio
async def test_runs_in_working_directory(tmp_path):
    (tmp_path / "here.txt").write_text("x", encoding="utf-8")
    out = await run_bash("ls", cwd=tmp_path)
    assert out.text == "here.txt"


@pytest.mark.asyncio
async def test_timeout_kills_command():
    out = await run_command("sleep 5", timeout=0.2)
    assert out.text == "Error: Command timed out after 0.2s"


@pytest.mark.asyncio
async def test_abort_event_kills_command():
    abort_event = asyncio.Event()
    task = asyncio.create_task(run_command("sleep 5", abort_event=abort_event))
    await asyncio.sleep(0.2)
    abort_event.set()
    out = await asyncio.wait_for(task, timeout=3.0)
    assert out.text == "Error: Command aborted"


@pytest.mark.asyncio
async def test_missing_working_directory_reports_error(tmp_path):
    out = await run_command("echo hi", cwd=tmp_path / "missing")
    assert out.text.startswith("Error: ")
    assert out.success is False


def test_shape_output_policy():
    assert shape_output("  hi \n", 0) == "hi"
    assert shape_output("   ", 0) == NO_OUTPUT
    assert shape_output("", 1) == "Error: exit status 1"
    assert shape_output("", None, error="boom") == "Error: boom"
    assert shape_output("abcdef", 0, max_output_chars=3) == "abc"


@pytest.mark.asyncio
async def test_shell_tool_result_and_definition(tmp_path):
    tool = ShellTool(working_dir=tmp_path)

    ok = await tool.execute(command="echo hello")
    blocked = await tool.execute(command="reboot")
    missing = await tool.execute()

    assert ok.success is True and ok.to_text() == "hello"
    assert blocked.success is False and blocked.to_text() == BLOCKED_SENTINEL
    assert missing.to_text() == "Error: Missing required argument: command"

    definition = tool.get_definition()
    assert definition.name == "bash"
    assert definition.parameters["required"] == ["command"]
    assert definition.to_wire()["type"] == "function"


@pytest.mark.asyncio
async def test_shell_tool_runs_empty_command():
    tool = ShellTool()

    result = await tool.execute(command="")

    assert result.success is True
    assert result.to_text() == NO_OUTPUT
