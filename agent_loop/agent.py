"""Agent turn loop.

The loop sends the system prompt plus history to the model, appends the
model's message and, while the model asks for tools, answers every requested
call in order before asking the model again::

    awaiting_model --(final answer)--> done
          |   ^
          |   +---- executing_tools
          +--(model call fails)--> failed

Tool failures never stop the loop; they are reported to the model as the
tool result. Only a failed model call ends a run early.
"""

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from agent_loop.config import Config
from agent_loop.exceptions import (
    AgentCancelledError,
    ConversationStateError,
    MaxTurnsExceededError,
    ToolArgumentsError,
    ToolError,
)
from agent_loop.history import ConversationHistory
from agent_loop.instructions import InstructionLoader
from agent_loop.llm import LLMProvider, LLMResponse, Message, ToolCall, ToolDefinition
from agent_loop.logging import get_logger
from agent_loop.tools import ShellTool, ToolRegistry

log = get_logger(__name__)

ABORTED_RESULT = "Error: Execution aborted"


class LoopState(str, Enum):
    """States of the turn loop."""

    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    FAILED = "failed"
    MAX_TURNS_EXCEEDED = "max_turns_exceeded"
    CANCELLED = "cancelled"


@dataclass
class LoopResult:
    """Outcome of one ``Agent.run`` call."""

    history: ConversationHistory
    state: LoopState
    error: Exception | None = None
    turns: int = 0
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.state == LoopState.DONE

    @property
    def final_text(self) -> str:
        """Text of the closing assistant message, empty unless the run is done."""
        if not self.ok:
            return ""
        return self.history.last_assistant_text()

    def raise_for_error(self) -> None:
        """Re-raise the error that ended the run, if any."""
        if self.error is not None:
            raise self.error


def parse_tool_arguments(tool_call: ToolCall) -> dict[str, Any]:
    """Parse the raw argument text of a tool call into a dict.

    Raises:
        ToolArgumentsError if the text is not a JSON object
    """
    try:
        arguments = json.loads(tool_call.arguments)
    except (TypeError, ValueError) as e:
        raise ToolArgumentsError(tool_call.name, str(e)) from e
    if not isinstance(arguments, dict):
        raise ToolArgumentsError(
            tool_call.name,
            f"expected a JSON object, got {type(arguments).__name__}",
        )
    return arguments


class Agent:
    """Drive the model/tool exchange over a caller-owned history."""

    def __init__(
        self,
        provider: LLMProvider,
        tools: ToolRegistry,
        system_prompt: str = "",
        max_turns: int | None = None,
        status_callback: Callable[[str], None] | None = None,
        tool_output_callback: Callable[[str, dict[str, Any], str], None] | None = None,
    ):
        """Initialize the agent.

        Args:
            provider: Model client
            tools: Registry whose definitions are offered to the model
            system_prompt: Prepended to the history on every model call
            max_turns: Optional ceiling on model calls per run
            status_callback: Optional loop state callback
            tool_output_callback: Optional callback receiving each tool result
        """
        if max_turns is not None and max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self.provider = provider
        self.tools = tools
        self.system_prompt = system_prompt
        self.max_turns = max_turns
        self.status_callback = status_callback
        self.tool_output_callback = tool_output_callback
        self.state = LoopState.DONE

    @classmethod
    def from_config(
        cls,
        config: Config,
        provider: LLMProvider,
        tools: ToolRegistry | None = None,
        runtime_base: Path | str | None = None,
        **kwargs: Any,
    ) -> "Agent":
        """Build an agent with the built-in bash tool and the configured prompt."""
        working_dir = config.resolved_working_dir(runtime_base)
        if tools is None:
            tools = ToolRegistry()
            tools.register(ShellTool(config.tools.shell, working_dir=working_dir))

        loader = InstructionLoader(override_dir=config.agent.prompts_dir or None)
        system_prompt = loader.render(config.agent.system_prompt, cwd=working_dir)

        return cls(
            provider=provider,
            tools=tools,
            system_prompt=system_prompt,
            max_turns=config.agent.max_turns,
            **kwargs,
        )

    @staticmethod
    def _empty_usage() -> dict[str, int]:
        return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}

    @staticmethod
    def _accumulate_usage(target: dict[str, int], usage: dict[str, int] | None) -> None:
        for key, value in (usage or {}).items():
            target[key] = int(target.get(key, 0)) + int(value or 0)

    def _set_state(self, state: LoopState) -> None:
        self.state = state
        if self.status_callback:
            try:
                self.status_callback(state.value)
            except Exception as e:
                log.debug("Status callback failed", error=str(e))

    def _emit_tool_output(self, tool_name: str, arguments: dict[str, Any], output: str) -> None:
        if self.tool_output_callback is None:
            return
        try:
            self.tool_output_callback(tool_name, arguments, output)
        except Exception as e:
            log.debug("Tool output callback failed", tool=tool_name, error=str(e))

    async def _call_model(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        abort_event: asyncio.Event | None,
    ) -> LLMResponse:
        """Call the model, giving up as soon as *abort_event* is set."""
        if abort_event is None:
            return await self.provider.complete(messages=messages, tools=tools)
        if abort_event.is_set():
            raise AgentCancelledError("Cancelled before model call")

        complete_task = asyncio.create_task(self.provider.complete(messages=messages, tools=tools))
        abort_task = asyncio.create_task(abort_event.wait())
        try:
            done, _ = await asyncio.wait(
                {complete_task, abort_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if complete_task in done:
                return await complete_task
            complete_task.cancel()
            try:
                await complete_task
            except asyncio.CancelledError:
                pass
            raise AgentCancelledError("Model call aborted")
        finally:
            for task in (complete_task, abort_task):
                if not task.done():
                    task.cancel()

    async def _run_tool_call(
        self,
        tool_call: ToolCall,
        abort_event: asyncio.Event | None,
    ) -> tuple[dict[str, Any], str]:
        """Answer one tool call, turning every failure into result text."""
        try:
            arguments = parse_tool_arguments(tool_call)
        except ToolArgumentsError as e:
            log.warning("Tool arguments rejected", tool=tool_call.name, call_id=tool_call.id, error=str(e))
            return {}, f"Error: {e}"

        log.info("Executing tool", tool=tool_call.name, call_id=tool_call.id)
        try:
            result = await self.tools.execute(tool_call.name, arguments, abort_event=abort_event)
        except ToolError as e:
            log.error("Tool execution failed", tool=tool_call.name, call_id=tool_call.id, error=str(e))
            return arguments, f"Error: {e}"
        return arguments, result.to_text()

    async def _answer_tool_calls(
        self,
        history: ConversationHistory,
        tool_calls: list[ToolCall],
        abort_event: asyncio.Event | None,
    ) -> None:
        """Append one tool message per call, in request order."""
        try:
            for tc in tool_calls:
                if abort_event is not None and abort_event.is_set():
                    history.add_tool_result(tc.id, ABORTED_RESULT)
                    continue
                arguments, output = await self._run_tool_call(tc, abort_event)
                history.add_tool_result(tc.id, output)
                self._emit_tool_output(tc.name, arguments, output)
        except asyncio.CancelledError:
            for call_id in history.pending_tool_call_ids:
                history.add_tool_result(call_id, ABORTED_RESULT)
            raise

    def _finish(
        self,
        history: ConversationHistory,
        state: LoopState,
        turns: int,
        usage: dict[str, int],
        error: Exception | None = None,
    ) -> LoopResult:
        self._set_state(state)
        return LoopResult(history=history, state=state, error=error, turns=turns, usage=usage)

    async def run(
        self,
        history: ConversationHistory,
        abort_event: asyncio.Event | None = None,
    ) -> LoopResult:
        """Run the loop until the model stops requesting tools.

        *history* is appended to in place and returned inside the result. A
        failed model call leaves it exactly as it was before that call.

        Args:
            history: Conversation so far, usually ending with a user message
            abort_event: Optional event that cancels the run when set

        Returns:
            LoopResult describing how the run ended

        Raises:
            ConversationStateError if *history* still has unanswered tool calls
        """
        if history.pending_tool_call_ids:
            raise ConversationStateError(
                f"History has unanswered tool calls: {history.pending_tool_call_ids!r}"
            )

        turns = 0
        usage = self._empty_usage()

        while True:
            if self.max_turns is not None and turns >= self.max_turns:
                log.warning("Max turns exceeded", max_turns=self.max_turns, messages=len(history))
                return self._finish(
                    history,
                    LoopState.MAX_TURNS_EXCEEDED,
                    turns,
                    usage,
                    MaxTurnsExceededError(self.max_turns),
                )

            self._set_state(LoopState.AWAITING_MODEL)
            messages = history.with_system_prompt(self.system_prompt)
            definitions = self.tools.get_definitions()

            log.info("Calling LLM", turn=turns + 1, message_count=len(messages))
            try:
                response = await self._call_model(messages, definitions or None, abort_event)
            except AgentCancelledError as e:
                log.info("Loop cancelled", turn=turns + 1)
                return self._finish(history, LoopState.CANCELLED, turns, usage, e)
            except Exception as e:
                log.error("LLM call failed", error=str(e))
                return self._finish(history, LoopState.FAILED, turns, usage, e)

            turns += 1
            self._accumulate_usage(usage, response.usage)
            history.append(response.to_message())

            if not response.requests_tools:
                log.info("Loop finished", turns=turns, messages=len(history))
                return self._finish(history, LoopState.DONE, turns, usage)

            self._set_state(LoopState.EXECUTING_TOOLS)
            log.info("Tool calls detected", count=len(response.tool_calls))
            await self._answer_tool_calls(history, response.tool_calls, abort_event)

            if abort_event is not None and abort_event.is_set():
                log.info("Loop cancelled", turn=turns)
                return self._finish(
                    history,
                    LoopState.CANCELLED,
                    turns,
                    usage,
                    AgentCancelledError("Execution aborted"),
                )

    async def complete(
        self,
        history: ConversationHistory,
        user_input: str,
        abort_event: asyncio.Event | None = None,
    ) -> LoopResult:
        """Append *user_input* to *history* and run the loop."""
        history.add_user(user_input)
        return await self.run(history, abort_event=abort_event)
