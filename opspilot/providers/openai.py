"""OpenAI-compatible chat-completions provider for OpsPilot."""

from __future__ import annotations

import json
from typing import Any

import openai

from opspilot.providers.base import LLMProvider, LLMResponse, ProviderError, ProviderKind, ToolCall, Usage
from opspilot.utils import get_logger

logger = get_logger(__name__)


class OpenAIProvider(LLMProvider):
    """OpenAI chat-completions provider implementation.

    Also serves any OpenAI-compatible endpoint (DashScope, OpenRouter, vLLM,
    ...) when constructed with a custom base URL and ``kind=ProviderKind.CUSTOM``.

    Example:
        >>> provider = OpenAIProvider(api_key="...")
        >>> response = await provider.chat(
        ...     messages=[{"role": "user", "content": "Hello!"}]
        ... )

        # For a compatible gateway:
        >>> provider = OpenAIProvider(
        ...     api_key="...",
        ...     base_url="https://dashscope.aliyuncs.com/compatible-mode/v1",
        ...     model="qwen-plus",
        ...     kind=ProviderKind.CUSTOM,
        ... )
    """

    kind = ProviderKind.OPENAI

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        default_temperature: float = 0.7,
        default_max_tokens: int = 4096,
        timeout_seconds: float = 120,
        kind: ProviderKind = ProviderKind.OPENAI,
    ):
        """Initialize OpenAI provider.

        Args:
            api_key: API key (may be empty for keyless local gateways)
            model: Model to use
            base_url: Optional base URL for compatible endpoints
            default_temperature: Default temperature
            default_max_tokens: Default max tokens
            timeout_seconds: HTTP timeout
            kind: Reported provider kind (openai or custom)
        """
        self.model = model
        self.kind = kind
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens

        # The SDK refuses an empty key even when the endpoint ignores it
        client_kwargs: dict[str, Any] = {
            "api_key": api_key or "dummy",
            "timeout": timeout_seconds,
        }
        if base_url:
            client_kwargs["base_url"] = base_url.rstrip("/")

        self.client = openai.AsyncOpenAI(**client_kwargs)

        logger.info(
            f"Initialized {kind.value} provider with model: {model}",
            extra={"base_url": base_url}
        )

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Send a chat completion request.

        Args:
            messages: Ordered conversation, system message included
            tools: Optional list of tools
            temperature: Optional temperature override
            max_tokens: Optional max tokens override

        Returns:
            LLMResponse with content and tool calls
        """
        request: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m["role"], "content": m.get("content", "")} for m in messages],
            "temperature": temperature if temperature is not None else self.default_temperature,
            "max_tokens": max_tokens or self.default_max_tokens,
        }

        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"

        try:
            response = await self.client.chat.completions.create(**request)
        except openai.APIStatusError as e:
            logger.error(f"{self.provider_name} API error: {e}")
            raise ProviderError(str(e), provider=self.provider_name, status=e.status_code) from e
        except openai.APIError as e:
            logger.error(f"{self.provider_name} API error: {e}")
            raise ProviderError(str(e), provider=self.provider_name) from e

        return self._parse_response(response)

    def _parse_response(self, response: Any) -> LLMResponse:
        """Normalize a chat-completions response object."""
        try:
            choice = response.choices[0]
            message = choice.message
        except (AttributeError, IndexError, TypeError) as e:
            raise ProviderError(
                f"Malformed response from {self.provider_name}: no choices",
                provider=self.provider_name,
            ) from e

        content = message.content or ""
        tool_calls = []

        for index, tc in enumerate(message.tool_calls or []):
            try:
                arguments = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning(
                    "Discarding unparseable tool arguments",
                    extra={"tool": tc.function.name},
                )
                arguments = {}
            if not isinstance(arguments, dict):
                arguments = {}

            tool_calls.append(
                ToolCall(
                    id=tc.id or f"call_{index}",
                    name=tc.function.name,
                    arguments=arguments,
                )
            )

        usage = Usage(
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
        )

        return LLMResponse(
            content=content,
            tool_calls=tool_calls if tool_calls else None,
            usage=usage,
            model=self.model,
            stop_reason=choice.finish_reason or "",
            raw_response=response,
        )
