"""Append-only conversation history."""

from collections.abc import Iterable, Iterator

from agent_loop.exceptions import ConversationStateError
from agent_loop.llm import Message, ToolCall


class ConversationHistory:
    """Ordered message log sent to the model as its full context.

    Messages can only be appended. Every tool call of an assistant message must
    be answered by a tool message, in request order, before any other message
    is added. System messages are accepted only as leading seeds; they are
    sent after the agent's own system prompt.
    """

    def __init__(self, messages: Iterable[Message] | None = None):
        self._messages: list[Message] = []
        self._pending: list[str] = []
        for msg in messages or []:
            self.append(msg)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    def __repr__(self) -> str:
        return f"ConversationHistory(messages={len(self._messages)}, pending={self._pending!r})"

    @property
    def messages(self) -> list[Message]:
        """Copy of the messages in conversation order."""
        return list(self._messages)

    @property
    def pending_tool_call_ids(self) -> list[str]:
        """Ids of tool calls from the last assistant message still awaiting a result."""
        return list(self._pending)

    def append(self, message: Message) -> None:
        """Append a message, enforcing tool-call/tool-result pairing."""
        if message.role == "system":
            if any(msg.role != "system" for msg in self._messages):
                raise ConversationStateError("System messages are only allowed before the conversation starts")
            self._messages.append(message)
            return

        if message.role == "tool":
            if not self._pending:
                raise ConversationStateError(
                    f"Tool result {message.tool_call_id!r} does not answer any pending tool call"
                )
            expected = self._pending[0]
            if message.tool_call_id != expected:
                raise ConversationStateError(
                    f"Tool result {message.tool_call_id!r} out of order, expected {expected!r}"
                )
            self._pending.pop(0)
        elif self._pending:
            raise ConversationStateError(
                f"Cannot add {message.role} message while tool calls are pending: {self._pending!r}"
            )

        self._messages.append(message)
        if message.role == "assistant":
            self._pending = [tc.id for tc in message.tool_calls]

    def add_user(self, content: str) -> Message:
        message = Message.user(content)
        self.append(message)
        return message

    def add_assistant(self, content: str = "", tool_calls: list[ToolCall] | None = None) -> Message:
        message = Message.assistant(content, tool_calls)
        self.append(message)
        return message

    def add_tool_result(self, tool_call_id: str, content: str) -> Message:
        message = Message.tool(content, tool_call_id)
        self.append(message)
        return message

    def last_assistant_text(self) -> str:
        """Return the text of the latest assistant message, or an empty string."""
        for msg in reversed(self._messages):
            if msg.role == "assistant":
                return msg.content
        return ""

    def with_system_prompt(self, system_prompt: str | None = None) -> list[Message]:
        """Messages for the next model request, system prompt first."""
        messages = list(self._messages)
        if system_prompt:
            messages.insert(0, Message.system(system_prompt))
        return messages
