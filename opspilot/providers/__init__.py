"""LLM provider adapters for OpsPilot."""

from opspilot.providers.anthropic import AnthropicProvider
from opspilot.providers.base import (
    LLMProvider,
    LLMResponse,
    ProviderError,
    ProviderKind,
    ToolCall,
    Usage,
)
from opspilot.providers.ollama import OllamaProvider
from opspilot.providers.openai import OpenAIProvider

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "ProviderError",
    "ProviderKind",
    "ToolCall",
    "Usage",
    "AnthropicProvider",
    "OpenAIProvider",
    "OllamaProvider",
]
