"""Anthropic Claude provider for OpsPilot."""

from __future__ import annotations

from typing import Any

import anthropic

from opspilot.providers.base import LLMProvider, LLMResponse, ProviderError, ProviderKind, ToolCall, Usage
from opspilot.utils import get_logger

logger = get_logger(__name__)


class AnthropicProvider(LLMProvider):
    """Anthropic Claude provider implementation.

    The Messages API has no ``system`` role, so the first system message of
    the conversation is lifted into the top-level ``system`` field.

    Example:
        >>> provider = AnthropicProvider(api_key="...")
        >>> response = await provider.chat(
        ...     messages=[{"role": "user", "content": "Hello!"}]
        ... )
    """

    kind = ProviderKind.ANTHROPIC

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        default_temperature: float = 0.7,
        default_max_tokens: int = 4096,
        timeout_seconds: float = 120,
    ):
        """Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key
            model: Model to use
            base_url: Optional API base URL (proxies, gateways)
            default_temperature: Default temperature
            default_max_tokens: Default max tokens
            timeout_seconds: HTTP timeout
        """
        self.model = model
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens

        client_kwargs: dict[str, Any] = {"api_key": api_key, "timeout": timeout_seconds}
        if base_url:
            client_kwargs["base_url"] = base_url.rstrip("/")
        self.client = anthropic.AsyncAnthropic(**client_kwargs)

        logger.info(f"Initialized Anthropic provider with model: {model}")

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Send a chat completion request to Claude.

        Args:
            messages: Ordered conversation, system message included
            tools: Optional list of tools in OpenAI format
            temperature: Optional temperature override
            max_tokens: Optional max tokens override

        Returns:
            LLMResponse with content and tool calls
        """
        system, anthropic_messages = self._convert_messages(messages)

        request: dict[str, Any] = {
            "model": self.model,
            "messages": anthropic_messages,
            "max_tokens": max_tokens or self.default_max_tokens,
            "temperature": temperature if temperature is not None else self.default_temperature,
        }

        if system:
            request["system"] = system

        if tools:
            request["tools"] = self._convert_tools(tools)

        try:
            response = await self.client.messages.create(**request)
        except anthropic.APIStatusError as e:
            logger.error(f"Anthropic API error: {e}")
            raise ProviderError(str(e), provider=self.provider_name, status=e.status_code) from e
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            raise ProviderError(str(e), provider=self.provider_name) from e

        return self._parse_response(response)

    def _parse_response(self, response: Any) -> LLMResponse:
        content = ""
        tool_calls = []

        try:
            blocks = list(response.content)
        except TypeError as e:
            raise ProviderError(
                "Malformed response from anthropic: no content blocks",
                provider=self.provider_name,
            ) from e

        for block in blocks:
            if block.type == "text":
                content += block.text
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.id,
                        name=block.name,
                        arguments=dict(block.input or {}),
                    )
                )

        usage = Usage(
            input_tokens=response.usage.input_tokens if response.usage else 0,
            output_tokens=response.usage.output_tokens if response.usage else 0,
        )

        return LLMResponse(
            content=content,
            tool_calls=tool_calls if tool_calls else None,
            usage=usage,
            model=self.model,
            stop_reason=response.stop_reason or "",
            raw_response=response,
        )

    def _convert_messages(
        self, messages: list[dict[str, Any]]
    ) -> tuple[str | None, list[dict[str, Any]]]:
        """Split off the system prompt and map the rest to Anthropic roles.

        Only the first system message becomes the top-level ``system`` field;
        later system messages are delivered as user text so no instruction
        is lost. Consecutive messages with the same role are merged because
        the Messages API requires strict user/assistant alternation.
        """
        system: str | None = None
        result: list[dict[str, Any]] = []

        for msg in messages:
            role = msg.get("role", "user")
            content = msg.get("content", "") or ""

            if role == "system":
                if system is None:
                    system = content
                    continue
                role = "user"
            elif role not in ("user", "assistant"):
                role = "user"

            if result and result[-1]["role"] == role:
                result[-1]["content"] += "\n\n" + content
            else:
                result.append({"role": role, "content": content})

        return system, result

    def _convert_tools(self, tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert OpenAI tool format to Anthropic format."""
        anthropic_tools = []

        for tool in tools:
            if tool.get("type") == "function":
                func = tool.get("function", {})
                anthropic_tools.append({
                    "name": func.get("name", ""),
                    "description": func.get("description", ""),
                    "input_schema": func.get("parameters", {"type": "object", "properties": {}}),
                })

        return anthropic_tools
