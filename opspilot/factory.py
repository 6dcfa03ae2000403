"""Factory functions for creating providers and other components."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from opspilot.providers.base import ProviderKind

if TYPE_CHECKING:
    from opspilot.config import Config, ProviderConfig
    from opspilot.core.agent import AgentLoop, ToolEventCallback
    from opspilot.providers.base import LLMProvider, LLMResponse
    from opspilot.skills.agentskills import AgentSkillCatalog
    from opspilot.skills.registry import SkillRegistry
    from opspilot.skills.state import SkillStateStore

_log = logging.getLogger(__name__)


def _openai(config: "ProviderConfig") -> "LLMProvider":
    from opspilot.providers.openai import OpenAIProvider
    return OpenAIProvider(
        api_key=config.api_key,
        model=config.model,
        base_url=config.base_url or None,
        default_temperature=config.temperature,
        default_max_tokens=config.max_tokens,
        timeout_seconds=config.timeout_seconds,
    )


def _custom(config: "ProviderConfig") -> "LLMProvider":
    from opspilot.providers.openai import OpenAIProvider
    if not config.base_url:
        raise ValueError("A custom provider requires base_url")
    return OpenAIProvider(
        api_key=config.api_key,
        model=config.model,
        base_url=config.base_url,
        default_temperature=config.temperature,
        default_max_tokens=config.max_tokens,
        timeout_seconds=config.timeout_seconds,
        kind=ProviderKind.CUSTOM,
    )


def _anthropic(config: "ProviderConfig") -> "LLMProvider":
    from opspilot.providers.anthropic import AnthropicProvider
    return AnthropicProvider(
        api_key=config.api_key,
        model=config.model,
        base_url=config.base_url or None,
        default_temperature=config.temperature,
        default_max_tokens=config.max_tokens,
        timeout_seconds=config.timeout_seconds,
    )


def _ollama(config: "ProviderConfig") -> "LLMProvider":
    from opspilot.providers.ollama import OllamaProvider
    return OllamaProvider(
        host=config.base_url or "http://localhost:11434",
        model=config.model,
        default_temperature=config.temperature,
        default_max_tokens=config.max_tokens,
        timeout_seconds=config.timeout_seconds,
    )


PROVIDER_BUILDERS: dict[ProviderKind, Callable[["ProviderConfig"], "LLMProvider"]] = {
    ProviderKind.OPENAI: _openai,
    ProviderKind.ANTHROPIC: _anthropic,
    ProviderKind.OLLAMA: _ollama,
    ProviderKind.CUSTOM: _custom,
}


def create_provider(config: "ProviderConfig") -> "LLMProvider":
    """Create an LLM provider based on configuration.

    Args:
        config: Provider endpoint configuration

    Returns:
        Configured LLM provider instance
    """
    builder = PROVIDER_BUILDERS.get(ProviderKind(config.type))
    if builder is None:
        raise ValueError(f"Unknown provider: {config.type}. Supported: {[k.value for k in PROVIDER_BUILDERS]}")
    return builder(config)


async def call_provider(
    config: "ProviderConfig",
    messages: list[dict[str, Any]],
    tools: list[dict[str, Any]] | None = None,
) -> "LLMResponse":
    """One-shot provider call: build the adapter for ``config`` and chat.

    Raises:
        ProviderError: On any transport or protocol failure
    """
    return await create_provider(config).chat(messages=messages, tools=tools)


def create_state_store(config: "Config") -> "SkillStateStore":
    """YAML-backed store when ``skills.state_file`` is set, otherwise in-memory."""
    from opspilot.skills.state import InMemorySkillStateStore, YamlSkillStateStore

    if config.skills.state_file:
        return YamlSkillStateStore(config.skills.state_file)
    return InMemorySkillStateStore()


def create_registry(config: "Config", state_store: "SkillStateStore | None" = None) -> "SkillRegistry":
    """Create a SkillRegistry with all configured builtin and custom skills."""
    from opspilot.skills.registry import SkillRegistry

    skills = config.skills
    state_store = state_store or create_state_store(config)

    skill_configs: dict[str, dict[str, Any]] = {
        "shell": {
            "working_directory": skills.shell_working_directory,
            "timeout_seconds": skills.shell_timeout_seconds,
        },
        "file_ops": {"base_path": skills.file_ops_base_path},
        "notification": {"webhooks": skills.notification_webhooks},
    }

    registry = SkillRegistry.from_config(skills, state_store=state_store, **skill_configs)
    _log.info(
        "Skill registry ready",
        extra={"skills": [s.id for s in registry.all_skills()], "tools": registry.available_tools},
    )
    return registry


def create_catalog(config: "Config", state_store: "SkillStateStore | None" = None) -> "AgentSkillCatalog":
    from opspilot.skills.agentskills import AgentSkillCatalog
    return AgentSkillCatalog(
        user_dirs=config.skills.skill_dirs,
        project_dir=config.skills.project_dir,
        state_store=state_store or create_state_store(config),
    )


def create_agent(
    config: "Config",
    provider: "LLMProvider | None" = None,
    registry: "SkillRegistry | None" = None,
    catalog: "AgentSkillCatalog | None" = None,
    on_event: "ToolEventCallback | None" = None,
) -> "AgentLoop":
    """Wire provider, registry and catalog into an AgentLoop."""
    from opspilot.core.agent import AgentLoop

    agent = config.agent
    return AgentLoop(
        provider=provider or create_provider(config.provider),
        registry=registry or create_registry(config),
        catalog=catalog or create_catalog(config),
        agent_name=agent.name,
        max_tool_rounds=agent.max_tool_rounds,
        max_retries_per_tool=agent.max_retries_per_tool,
        loop_history_size=agent.loop_history_size,
        loop_warning_threshold=agent.loop_warning_threshold,
        loop_block_threshold=agent.loop_block_threshold,
        max_skills_prompt_chars=agent.max_skills_prompt_chars,
        max_prompt_skills=agent.max_prompt_skills,
        custom_instructions=agent.custom_instructions,
        on_event=on_event,
    )
