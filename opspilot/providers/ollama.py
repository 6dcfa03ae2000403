"""Ollama provider for local LLM inference."""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp

from opspilot.providers.base import LLMProvider, LLMResponse, ProviderError, ProviderKind, Usage
from opspilot.utils import get_logger

logger = get_logger(__name__)


class OllamaProvider(LLMProvider):
    """Ollama provider for local LLM inference.

    Uses the native ``/api/chat`` endpoint. Function calling is not
    offered through this adapter: tools are never sent and responses
    always carry plain content only.

    Example:
        >>> provider = OllamaProvider(model="llama3")
        >>> response = await provider.chat(
        ...     messages=[{"role": "user", "content": "Hello!"}]
        ... )
    """

    kind = ProviderKind.OLLAMA

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "llama3",
        default_temperature: float = 0.7,
        default_max_tokens: int = 4096,
        timeout_seconds: float = 120,
    ):
        """Initialize Ollama provider.

        Args:
            host: Ollama server URL
            model: Model name (e.g., 'llama3', 'mistral', 'qwen2.5')
            default_temperature: Default temperature
            default_max_tokens: Default max tokens
            timeout_seconds: Request timeout
        """
        self.host = host.rstrip("/")
        self.model = model
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

        logger.info(f"Initialized Ollama provider: {host} model={model}")

    @property
    def supports_tools(self) -> bool:
        return False

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Send a chat request to Ollama.

        Args:
            messages: Ordered conversation, system message included
            tools: Ignored; this adapter does not do function calling
            temperature: Optional temperature override
            max_tokens: Optional max tokens override

        Returns:
            LLMResponse with content only
        """
        if tools:
            logger.debug("Ollama adapter ignores tools", extra={"tool_count": len(tools)})

        payload = {
            "model": self.model,
            "messages": [
                {"role": m["role"], "content": m.get("content", "") or ""}
                for m in messages
            ],
            "stream": False,
            "options": {
                "temperature": temperature if temperature is not None else self.default_temperature,
                "num_predict": max_tokens or self.default_max_tokens,
            },
        }

        logger.debug(
            "Ollama request",
            extra={
                "host": self.host,
                "model": self.model,
                "message_count": len(payload["messages"]),
            }
        )

        data = await self._post("/api/chat", payload)
        if not isinstance(data, dict):
            raise ProviderError("Malformed response from ollama", provider=self.provider_name)

        message = data.get("message") or {}
        content = message.get("content", "") or ""

        # Some reasoning models put their answer in "thinking"
        if not content and message.get("thinking"):
            content = message["thinking"]

        if not content:
            content = data.get("response", "") or ""

        usage = Usage(
            input_tokens=data.get("prompt_eval_count", 0),
            output_tokens=data.get("eval_count", 0),
        )

        return LLMResponse(
            content=content,
            tool_calls=None,
            usage=usage,
            model=self.model,
            stop_reason=data.get("done_reason", "stop"),
            raw_response=data,
        )

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        """POST JSON to the Ollama server and return the decoded body."""
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(f"{self.host}{path}", json=payload) as response:
                    if not 200 <= response.status < 300:
                        error_text = await response.text()
                        logger.error(f"Ollama error: {error_text}")
                        raise ProviderError(
                            f"Ollama request failed: HTTP {response.status}",
                            provider=self.provider_name,
                            status=response.status,
                        )
                    return await response.json()
        except aiohttp.ClientError as e:
            logger.error(f"Ollama connection error: {e}")
            raise ProviderError(
                f"Failed to connect to Ollama at {self.host}: {e}",
                provider=self.provider_name,
            ) from e
        except asyncio.TimeoutError as e:
            logger.error(f"Ollama request timed out after {self.timeout.total}s")
            raise ProviderError(
                f"Ollama request timed out after {self.timeout.total}s",
                provider=self.provider_name,
            ) from e
        except ValueError as e:
            raise ProviderError(
                f"Malformed response from ollama: {e}", provider=self.provider_name
            ) from e
