"""Base LLM provider interface for OpsPilot."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ProviderKind(str, Enum):
    """Wire protocol spoken by a provider endpoint."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"
    CUSTOM = "custom"


class ProviderError(RuntimeError):
    """Transport-level failure talking to an LLM provider.

    Raised for network errors, non-2xx responses, authentication failures
    and payloads that cannot be normalized.
    """

    def __init__(self, message: str, provider: str = "", status: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status = status


@dataclass
class ToolCall:
    """Represents a tool call from the LLM."""

    id: str
    name: str
    arguments: dict[str, Any]

    @property
    def arguments_json(self) -> str:
        """Arguments serialized as a JSON object string."""
        return json.dumps(self.arguments, ensure_ascii=False)


@dataclass
class Usage:
    """Token usage information."""

    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used."""
        return self.input_tokens + self.output_tokens


@dataclass
class LLMResponse:
    """Normalized response from an LLM provider."""

    content: str
    tool_calls: list[ToolCall] | None = None
    usage: Usage = field(default_factory=lambda: Usage(0, 0))
    model: str = ""
    stop_reason: str = ""
    raw_response: Any = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    Every provider accepts the same ordered conversation (``system``, ``user``
    and ``assistant`` messages with string content) plus an optional list of
    tools in OpenAI function format, and returns an :class:`LLMResponse`.
    Providers hold no per-conversation state and may be shared between
    concurrent turns.
    """

    kind: ProviderKind
    model: str

    @property
    def provider_name(self) -> str:
        return self.kind.value

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Send a chat completion request.

        Args:
            messages: Ordered list of message dicts with 'role' and 'content'
            tools: Optional list of tool definitions (OpenAI format);
                ``None`` disables function calling
            temperature: Optional temperature override
            max_tokens: Optional max tokens override

        Returns:
            LLMResponse with content, tool calls, and usage info

        Raises:
            ProviderError: On any transport or protocol failure
        """

    @property
    def supports_tools(self) -> bool:
        """Whether this provider can return tool-call requests."""
        return True
