import asyncio

import pytest

from agent_loop.exceptions import ToolExecutionError, ToolNotFoundError
from agent_loop.llm import ToolDefinition
from agent_loop.tools.registry import FunctionTool, Tool, ToolRegistry, ToolResult


class DummyTool(Tool):
    def __init__(self, name: str, reply: str = "ok"):
        self.name = name
        self.description = f"Dummy tool {name}"
        self.parameters = {
            "type": "object",
            "properties": {},
            "required": [],
        }
        self.reply = reply
        self.calls: list[dict] = []

    async def execute(self, **kwargs):
        self.calls.append(kwargs)
        return ToolResult(success=True, content=self.reply)


class SlowTool(Tool):
    name = "slow"
    description = "Slow"
    parameters = {
        "type": "object",
        "properties": {},
        "required": [],
    }
    timeout_seconds = 1.0

    async def execute(self, **kwargs):
        await asyncio.sleep(2.0)
        return ToolResult(success=True, content="done")


class CancellableTool(Tool):
    name = "cancellable"
    description = "Cancellable"
    parameters = {
        "type": "object",
        "properties": {},
        "required": [],
    }
    timeout_seconds = 20.0

    def __init__(self):
        self.cancelled = False

    async def execute(self, **kwargs):
        try:
            await asyncio.sleep(10.0)
            return ToolResult(success=True, content="done")
        except asyncio.CancelledError:
            self.cancelled = True
            raise


class RaisingTool(Tool):
    name = "explode"
    description = "Always raises"
    parameters = {"type": "object", "properties": {}}

    async def execute(self, **kwargs):
        raise RuntimeError("kaboom")


def _definition(name: str) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=f"{name} tool",
        parameters={"type": "object", "properties": {"text": {"type": "string"}}},
    )


@pytest.mark.asyncio
async def test_registry_execute_times_out_tool():
    registry = ToolRegistry()
    registry.register(SlowTool())

    with pytest.raises(ToolExecutionError, match="timed out after 1s"):
        await registry.execute(name="slow", arguments={})


@pytest.mark.asyncio
async def test_registry_execute_aborts_running_tool():
    registry = ToolRegistry()
    tool = CancellableTool()
    registry.register(tool)
    abort_event = asyncio.Event()

    task = asyncio.create_task(
        registry.execute(name="cancellable", arguments={}, abort_event=abort_event)
    )
    await asyncio.sleep(0.2)
    abort_event.set()

    with pytest.raises(ToolExecutionError, match="aborted"):
        await task
    assert tool.cancelled is True


@pytest.mark.asyncio
async def test_registry_execute_rejects_preset_abort():
    registry = ToolRegistry()
    tool = DummyTool("echo")
    registry.register(tool)
    abort_event = asyncio.Event()
    abort_event.set()

    with pytest.raises(ToolExecutionError, match="aborted"):
        await registry.execute(name="echo", arguments={}, abort_event=abort_event)
    assert tool.calls == []


@pytest.mark.asyncio
async def test_registry_execute_unknown_tool():
    registry = ToolRegistry()

    with pytest.raises(ToolNotFoundError, match="unknown tool: missing"):
        await registry.execute(name="missing", arguments={})


@pytest.mark.asyncio
async def test_registry_execute_wraps_tool_exceptions():
    registry = ToolRegistry()
    registry.register(RaisingTool())

    with pytest.raises(ToolExecutionError, match="Tool 'explode' failed: kaboom"):
        await registry.execute(name="explode", arguments={})


@pytest.mark.asyncio
async def test_registry_execute_drops_reserved_arguments():
    registry = ToolRegistry()
    tool = DummyTool("echo")
    registry.register(tool)

    result = await registry.execute(name="echo", arguments={"text": "hi", "_secret": 1})

    assert result.content == "ok"
    assert tool.calls[0]["text"] == "hi"
    assert "_secret" not in tool.calls[0]
    assert isinstance(tool.calls[0]["_abort_event"], asyncio.Event)


def test_registry_override_keeps_position():
    registry = ToolRegistry()
    registry.register(DummyTool("a"))
    registry.register(DummyTool("b"))
    replacement = DummyTool("a", reply="new")
    registry.register(replacement)

    assert registry.list_tools() == ["a", "b"]
    assert registry.get("a") is replacement
    assert [d.name for d in registry.get_definitions()] == ["a", "b"]


def test_registry_rejects_duplicates_when_override_disallowed():
    registry = ToolRegistry(allow_override=False)
    registry.register(DummyTool("a"))

    with pytest.raises(ValueError, match="already registered"):
        registry.register(DummyTool("a"))


def test_registry_rejects_nameless_tool():
    registry = ToolRegistry()

    with pytest.raises(ValueError):
        registry.register(DummyTool(""))


def test_registry_unregister_and_lookup():
    registry = ToolRegistry()
    registry.register(DummyTool("a"))

    assert registry.has_tool("a") is True
    registry.unregister("a")
    registry.unregister("a")
    assert registry.has_tool("a") is False
    with pytest.raises(ToolNotFoundError):
        registry.get("a")


@pytest.mark.asyncio
async def test_register_function_sync_handler():
    registry = ToolRegistry()
    registry.register_function(_definition("upper"), lambda args: args["text"].upper())

    result = await registry.execute("upper", {"text": "abc"})

    assert result.success is True
    assert result.content == "ABC"


@pytest.mark.asyncio
async def test_register_function_async_handler():
    registry = ToolRegistry()

    async def handler(args):
        await asyncio.sleep(0)
        return ToolResult(success=True, content=f"got {args['text']}")

    tool = registry.register_function(_definition("async_echo"), handler)

    assert isinstance(tool, FunctionTool)
    result = await registry.execute("async_echo", {"text": "x"})
    assert result.content == "got x"


@pytest.mark.asyncio
async def test_register_function_output_error_tuple():
    registry = ToolRegistry()
    registry.register_function(_definition("fails"), lambda args: ("", "disk full"))
    registry.register_function(_definition("fine"), lambda args: ("done", None))
    registry.register_function(_definition("partial"), lambda args: ("partial body", "connection reset"))

    failed = await registry.execute("fails", {})
    fine = await registry.execute("fine", {})
    partial = await registry.execute("partial", {})

    assert failed.success is False
    assert failed.to_text() == "Error: disk full"
    assert fine.to_text() == "done"
    assert partial.success is False
    assert partial.to_text() == "Error: connection reset"


@pytest.mark.asyncio
async def test_register_function_rejects_unsupported_result():
    registry = ToolRegistry()
    registry.register_function(_definition("bad"), lambda args: 42)

    with pytest.raises(ToolExecutionError, match="Unsupported handler result type"):
        await registry.execute("bad", {})


def test_function_tool_definition_round_trip():
    definition = _definition("echo")
    tool = FunctionTool(definition, lambda args: "x")

    assert tool.get_definition() == definition
    assert tool.timeout_seconds is None
