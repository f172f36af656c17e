"""Chat-completion model client and the message types it exchanges."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from agent_loop.config import ModelConfig
from agent_loop.exceptions import LLMAPIError, LLMError
from agent_loop.logging import get_logger

log = get_logger(__name__)


ROLES = ("system", "user", "assistant", "tool")
TOOL_CALLS_FINISH_REASON = "tool_calls"


@dataclass
class ToolCall:
    """A tool call requested by the model.

    ``arguments`` is the raw text sent by the model; it is meant to be JSON
    but is only parsed by the turn loop.
    """

    id: str
    name: str
    arguments: str

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "ToolCall":
        function = data.get("function") or {}
        arguments = function.get("arguments", "")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return cls(
            id=str(data.get("id", "")),
            name=str(function.get("name", "")),
            arguments=arguments,
        )


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant", "tool"
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")
        if self.tool_calls and self.role != "assistant":
            raise ValueError("Only assistant messages can carry tool calls")
        if self.role == "tool" and self.tool_call_id is None:
            raise ValueError("Tool messages require a tool_call_id")
        if self.role != "tool" and self.tool_call_id is not None:
            raise ValueError("Only tool messages can carry a tool_call_id")

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str = "", tool_calls: list[ToolCall] | None = None) -> "Message":
        return cls(role="assistant", content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> "Message":
        return cls(role="tool", content=content, tool_call_id=tool_call_id)

    def to_wire(self) -> dict[str, Any]:
        """Convert to the chat-completions message shape."""
        entry: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            entry["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.role == "tool":
            entry["tool_call_id"] = self.tool_call_id
        return entry


@dataclass(frozen=True)
class ToolDefinition:
    """Definition of a tool for the LLM."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class LLMResponse:
    """One candidate message plus its termination signal."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str = "stop"
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def requests_tools(self) -> bool:
        """Whether the model stopped to wait for tool results."""
        return self.finish_reason == TOOL_CALLS_FINISH_REASON

    def to_message(self) -> Message:
        """Build the assistant message to append to history.

        Tool calls are kept only when the termination signal asks for them,
        so a final answer never leaves unanswered calls behind.
        """
        tool_calls = self.tool_calls if self.requests_tools else []
        return Message.assistant(content=self.content, tool_calls=tool_calls)


class LLMProvider(ABC):
    """Model client capability: one request, one response."""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None


class OpenAICompatibleProvider(LLMProvider):
    """Chat-completions provider for OpenAI-compatible endpoints (DashScope, vLLM, ...)."""

    def __init__(
        self,
        model: str,
        base_url: str,
        api_key: str = "",
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the provider.

        Args:
            model: Model name sent with every request (e.g. 'qwen-plus')
            base_url: Endpoint root, '/chat/completions' is appended
            api_key: Bearer token
            temperature: Optional sampling temperature
            max_tokens: Optional completion token cap
            timeout: Request timeout in seconds
            transport: Optional httpx transport override
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens

        self.client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    def _build_body(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [msg.to_wire() for msg in messages],
        }
        if tools:
            body["tools"] = [tool.to_wire() for tool in tools]
        if self.temperature is not None:
            body["temperature"] = self.temperature
        if self.max_tokens:
            body["max_tokens"] = self.max_tokens
        return body

    @staticmethod
    def _parse_response(data: dict[str, Any]) -> LLMResponse:
        choices = data.get("choices") or []
        if not choices:
            raise LLMError("Model response contained no choices")
        choice = choices[0]
        message = choice.get("message") or {}

        tool_calls = [ToolCall.from_wire(tc) for tc in message.get("tool_calls") or []]

        usage = data.get("usage") or {}
        return LLMResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            finish_reason=str(choice.get("finish_reason") or ""),
            model=str(data.get("model", "")),
            usage={
                "prompt_tokens": int(usage.get("prompt_tokens", 0) or 0),
                "completion_tokens": int(usage.get("completion_tokens", 0) or 0),
                "total_tokens": int(usage.get("total_tokens", 0) or 0),
            },
        )

    async def complete(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        """Generate a completion."""
        url = f"{self.base_url}/chat/completions"
        body = self._build_body(messages, tools)

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            log.debug("Calling model", model=self.model, url=url, msg_count=len(messages))

            response = await self.client.post(url, json=body, headers=headers)

            log.debug("Model response status", status=response.status_code)

            if not response.is_success:
                raise LLMAPIError(
                    f"API call failed: {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )

            return self._parse_response(response.json())

        except httpx.HTTPError as e:
            raise LLMAPIError(f"API call failed: {e}")
        except json.JSONDecodeError as e:
            raise LLMError(f"Model response decode error: {e}")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_provider(config: ModelConfig, transport: httpx.AsyncBaseTransport | None = None) -> LLMProvider:
    """Create an LLM provider from the model configuration.

    Args:
        config: Model section of the configuration
        transport: Optional httpx transport override

    Returns:
        Configured LLMProvider instance
    """
    provider = (config.provider or "").strip().lower()
    if provider in ("openai", "dashscope", "qwen"):
        return OpenAICompatibleProvider(
            model=config.model,
            base_url=config.base_url,
            api_key=config.api_key,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
            transport=transport,
        )
    raise ValueError(f"Provider '{config.provider}' not supported. Use 'openai' or 'dashscope'.")
