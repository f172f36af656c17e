"""Tool registry and base tool class."""

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, model_validator

from agent_loop.exceptions import ToolExecutionError, ToolNotFoundError
from agent_loop.llm import ToolDefinition
from agent_loop.logging import get_logger

log = get_logger(__name__)

Handler = Callable[[dict[str, Any]], Any]


class ToolResult(BaseModel):
    """Result from tool execution."""

    success: bool = True
    content: str = ""
    error: str | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = (self.content or "").strip()
            self.error = fallback or "Tool execution failed"
        return self

    def to_text(self) -> str:
        """Text reported back to the model.

        Visible output wins over the error description, so a failing command
        that printed something reports what it printed.
        """
        if self.success:
            return self.content
        if self.content:
            return self.content
        return f"Error: {self.error}"


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}
    timeout_seconds: float | None = 30.0

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments

        Returns:
            ToolResult with success status and content
        """
        pass

    def get_definition(self) -> ToolDefinition:
        """Get the tool definition for the LLM."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )


class FunctionTool(Tool):
    """Adapt a plain ``(definition, handler)`` pair to the Tool interface.

    The handler receives the parsed argument dict and may return a ToolResult,
    an ``(output, error)`` tuple or a bare string. A tuple with an error is
    reported as ``Error: <error>`` and its output is discarded. Synchronous handlers run in
    a worker thread so timeouts and aborts still apply.
    """

    def __init__(
        self,
        definition: ToolDefinition,
        handler: Handler,
        timeout_seconds: float | None = None,
    ):
        self.name = definition.name
        self.description = definition.description
        self.parameters = dict(definition.parameters)
        self.timeout_seconds = timeout_seconds
        self._handler = handler

    async def execute(self, **kwargs: Any) -> ToolResult:
        arguments = {key: value for key, value in kwargs.items() if not key.startswith("_")}
        if inspect.iscoroutinefunction(self._handler):
            output = await self._handler(arguments)
        else:
            output = await asyncio.to_thread(self._handler, arguments)
            if inspect.isawaitable(output):
                output = await output
        return self._coerce_result(output)

    @staticmethod
    def _coerce_result(output: Any) -> ToolResult:
        if isinstance(output, ToolResult):
            return output
        if isinstance(output, tuple) and len(output) == 2:
            text, error = output
            if error:
                # A handler error replaces whatever output came with it.
                return ToolResult(success=False, content=f"Error: {error}", error=str(error))
            return ToolResult(success=True, content=str(text or ""))
        if isinstance(output, str):
            return ToolResult(success=True, content=output)
        raise TypeError(f"Unsupported handler result type: {type(output)!r}")


class ToolRegistry:
    """Ordered name -> tool lookup used for definitions and dispatch."""

    def __init__(self, allow_override: bool = True):
        self._tools: dict[str, Tool] = {}
        self.allow_override = allow_override

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Re-registering a name replaces the previous tool in place, keeping its
        position in the definition order, unless the registry was created with
        ``allow_override=False``.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")
        if tool.name in self._tools and not self.allow_override:
            raise ValueError(f"Tool already registered: {tool.name}")

        log.debug("Registering tool", tool=tool.name, replaced=tool.name in self._tools)
        self._tools[tool.name] = tool

    def register_function(
        self,
        definition: ToolDefinition,
        handler: Handler,
        timeout_seconds: float | None = None,
    ) -> Tool:
        """Register a plain handler under the given definition."""
        tool = FunctionTool(definition, handler, timeout_seconds=timeout_seconds)
        self.register(tool)
        return tool

    def unregister(self, name: str) -> None:
        """Unregister a tool.

        Args:
            name: Tool name to unregister
        """
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_tools(self) -> list[str]:
        """List registered tool names in registration order."""
        return list(self._tools)

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions in registration order."""
        return [tool.get_definition() for tool in self._tools.values()]

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        """Cancel task and await it to avoid pending task warnings."""
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @staticmethod
    async def _bridge_abort_event(source: asyncio.Event, target: asyncio.Event) -> None:
        """Mirror external abort event to local tool abort event."""
        await source.wait()
        target.set()

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        abort_event: asyncio.Event | None = None,
    ) -> ToolResult:
        """Execute a tool by name.

        Arguments are passed through unvalidated; the tool's result is returned
        unchanged.

        Args:
            name: Tool name
            arguments: Parsed tool arguments
            abort_event: Optional event that aborts the running tool when set

        Returns:
            ToolResult from execution

        Raises:
            ToolNotFoundError if tool not found
            ToolExecutionError if execution raises, times out or is aborted
        """
        tool = self.get(name)
        # Leading underscores are reserved for runtime keywords.
        call_args = {key: value for key, value in arguments.items() if not str(key).startswith("_")}

        execute_task: asyncio.Task[ToolResult] | None = None
        abort_wait_task: asyncio.Task[bool] | None = None
        bridge_task: asyncio.Task[None] | None = None
        tool_abort_event = asyncio.Event()
        try:
            log.info("Executing tool", tool=name, args=call_args)
            timeout_seconds = tool.timeout_seconds
            if timeout_seconds is not None:
                timeout_seconds = max(1.0, float(timeout_seconds))

            if abort_event is not None:
                if abort_event.is_set():
                    raise ToolExecutionError(name, "Execution aborted")
                bridge_task = asyncio.create_task(
                    self._bridge_abort_event(abort_event, tool_abort_event)
                )

            execute_task = asyncio.create_task(
                tool.execute(**call_args, _abort_event=tool_abort_event)
            )
            abort_wait_task = asyncio.create_task(tool_abort_event.wait())
            done, _ = await asyncio.wait(
                {execute_task, abort_wait_task},
                timeout=timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )

            if execute_task in done:
                result = await execute_task
                if not isinstance(result, ToolResult):
                    raise ToolExecutionError(name, "Tool returned invalid result payload")
                log.info("Tool executed", tool=name, success=result.success)
                return result

            if abort_wait_task in done:
                await self._cancel_task(execute_task)
                raise ToolExecutionError(name, "Execution aborted")

            tool_abort_event.set()
            await self._cancel_task(execute_task)
            timeout_label = int(timeout_seconds) if float(timeout_seconds).is_integer() else timeout_seconds
            raise ToolExecutionError(name, f"Execution timed out after {timeout_label}s")
        except asyncio.CancelledError:
            tool_abort_event.set()
            await self._cancel_task(execute_task)
            raise
        except ToolExecutionError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise ToolExecutionError(name, str(e))
        finally:
            await self._cancel_task(abort_wait_task)
            await self._cancel_task(bridge_task)
