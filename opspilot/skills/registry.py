"""Skill registry for OpsPilot."""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Any

from opspilot.skills.base import BaseSkill, Skill, Tool, ToolResult
from opspilot.skills.custom import (
    ScriptRunner,
    build_custom_skill,
    load_custom_definitions,
)
from opspilot.skills.state import AGENT_SKILL_PREFIX, InMemorySkillStateStore, SkillStateStore
from opspilot.utils import get_logger

if TYPE_CHECKING:
    from opspilot.config import SkillsConfig

logger = get_logger(__name__)

# Registry of built-in skills
BUILTIN_SKILLS = {
    "shell": "opspilot.skills.builtin.shell.ShellSkill",
    "file_ops": "opspilot.skills.builtin.file_ops.FileOpsSkill",
    "notification": "opspilot.skills.builtin.notification.NotificationSkill",
}

UNKNOWN_TOOL_PREFIX = "Unknown tool: "
FAILURE_PREFIX = "Execution failed: "


class SkillRegistry:
    """Hold built-in and custom skills and route tool calls to them.

    Handles:
    - Registering built-in skills by name
    - Upserting and removing custom skills
    - Enabling and disabling skills, persisted through a state store
    - Looking up and executing tools from enabled skills only

    Example:
        >>> registry = SkillRegistry()
        >>> registry.load_builtin("shell")
        >>> registry.set_enabled("skill-shell", False)
        >>> registry.find_tool("run_command") is None
        True
    """

    def __init__(self, state_store: SkillStateStore | None = None):
        """Initialize skill registry.

        Args:
            state_store: Where enablement flags are loaded from and saved to
        """
        self._skills: dict[str, Skill] = {}
        self._state_store = state_store or InMemorySkillStateStore()
        self._saved_states = {
            k: v for k, v in self._state_store.load().items() if not k.startswith(AGENT_SKILL_PREFIX)
        }

    @classmethod
    def from_config(
        cls,
        config: "SkillsConfig",
        state_store: SkillStateStore | None = None,
        **skill_configs: dict[str, Any],
    ) -> "SkillRegistry":
        """Create a registry and load skills from configuration.

        Args:
            config: Skills configuration
            state_store: Enablement store
            **skill_configs: Per-skill configuration (e.g., shell={"timeout_seconds": 10})

        Returns:
            Configured skill registry
        """
        registry = cls(state_store=state_store)

        for skill_name in config.builtin:
            try:
                registry.load_builtin(skill_name, **skill_configs.get(skill_name, {}))
            except Exception as e:
                logger.warning(f"Failed to load builtin skill {skill_name}: {e}")

        if config.custom_file:
            registry.load_custom_skills(
                config.custom_file,
                runner=ScriptRunner(timeout_seconds=config.script_timeout_seconds),
                reject_on_critical=config.reject_on_critical,
            )

        return registry

    def load_builtin(self, name: str, **config: Any) -> Skill:
        """Instantiate and register a built-in skill by name.

        Args:
            name: Built-in skill name (e.g., 'shell')
            **config: Skill-specific constructor arguments

        Returns:
            The registered skill record
        """
        if name not in BUILTIN_SKILLS:
            raise ValueError(f"Unknown built-in skill: {name}. Available: {list(BUILTIN_SKILLS.keys())}")

        module_name, class_name = BUILTIN_SKILLS[name].rsplit(".", 1)
        skill_class = getattr(importlib.import_module(module_name), class_name)
        instance: BaseSkill = skill_class(**config) if config else skill_class()
        return self.register_builtin(instance)

    def register_builtin(self, skill: BaseSkill | Skill) -> Skill:
        """Register a built-in skill, restoring its persisted enablement."""
        record = skill.to_skill() if isinstance(skill, BaseSkill) else skill.model_copy()
        record.builtin = True
        record.enabled = self._saved_states.get(record.id, record.enabled)
        self._skills[record.id] = record

        logger.info(
            f"Loaded skill: {record.id}",
            extra={"tools": [t.name for t in record.tools], "enabled": record.enabled},
        )
        return record

    def load_custom_skills(
        self,
        path: str,
        runner: ScriptRunner | None = None,
        reject_on_critical: bool = True,
    ) -> list[Skill]:
        """Load custom skill definitions from a YAML file.

        Definitions that fail the security scan or clash with a
        registered skill are skipped with an error log.

        Returns:
            The skills that were registered
        """
        runner = runner or ScriptRunner()
        loaded = []

        for definition in load_custom_definitions(path):
            try:
                skill = build_custom_skill(definition, runner, reject_on_critical=reject_on_critical)
                loaded.append(self.add_custom(skill))
            except Exception as e:
                logger.error(f"Failed to load custom skill {definition.id}: {e}")

        return loaded

    def add_custom(self, skill: Skill) -> Skill:
        """Register a custom skill, replacing any skill with the same id.

        Raises:
            ValueError: If the id belongs to a built-in skill, or the skill
                would be enabled with a tool name another enabled skill uses
        """
        existing = self._skills.get(skill.id)
        if existing is not None and existing.builtin:
            raise ValueError(f"Cannot replace built-in skill: {skill.id}")

        record = skill.model_copy()
        record.builtin = False
        record.enabled = self._saved_states.get(record.id, record.enabled)
        if record.enabled:
            self._check_tool_names(record)
        self._skills[record.id] = record

        logger.info(
            f"{'Replaced' if existing else 'Added'} custom skill: {record.id}",
            extra={"tools": [t.name for t in record.tools]},
        )
        return record

    def remove_custom(self, skill_id: str) -> bool:
        """Remove a custom skill.

        Returns:
            False when the skill is missing or built-in
        """
        skill = self._skills.get(skill_id)
        if skill is None or skill.builtin:
            return False

        del self._skills[skill_id]
        logger.info(f"Removed custom skill: {skill_id}")
        return True

    def set_enabled(self, skill_id: str, enabled: bool) -> bool:
        """Enable or disable a skill and persist the new state.

        Returns:
            False when no such skill is registered

        Raises:
            ValueError: If enabling would duplicate an enabled tool name
        """
        skill = self._skills.get(skill_id)
        if skill is None:
            return False

        if enabled and not skill.enabled:
            self._check_tool_names(skill)

        skill.enabled = enabled
        self._saved_states[skill_id] = enabled
        self._state_store.save({**self._state_store.load(), **self.export_states()})
        logger.info(f"Skill {skill_id} {'enabled' if enabled else 'disabled'}")
        return True

    def _check_tool_names(self, skill: Skill) -> None:
        """Raise ValueError if enabling ``skill`` would duplicate a tool name."""
        names = [t.name for t in skill.tools]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Skill {skill.id} declares tool names more than once: {sorted(duplicates)}")

        for other in self.enabled_skills():
            if other.id == skill.id:
                continue
            clashes = sorted(set(names) & {t.name for t in other.tools})
            if clashes:
                raise ValueError(f"Tool names {clashes} of {skill.id} are already provided by {other.id}")

    def sync_states(self, states: dict[str, bool]) -> None:
        """Apply an externally loaded ``skill_id -> enabled`` mapping."""
        self._saved_states.update(states)
        for skill_id, enabled in states.items():
            skill = self._skills.get(skill_id)
            if skill is None:
                continue
            if enabled and not skill.enabled:
                try:
                    self._check_tool_names(skill)
                except ValueError as e:
                    logger.warning(f"Keeping {skill_id} disabled: {e}")
                    continue
            skill.enabled = enabled

    def export_states(self) -> dict[str, bool]:
        states = dict(self._saved_states)
        states.update({skill_id: skill.enabled for skill_id, skill in self._skills.items()})
        return states

    def get_skill(self, skill_id: str) -> Skill | None:
        return self._skills.get(skill_id)

    def all_skills(self) -> list[Skill]:
        return list(self._skills.values())

    def enabled_skills(self) -> list[Skill]:
        return [s for s in self._skills.values() if s.enabled]

    def list_enabled_tools(self) -> list[Tool]:
        """Flatten the tools of every enabled skill."""
        tools = []
        for skill in self.enabled_skills():
            tools.extend(skill.tools)
        return tools

    def find_tool(self, name: str) -> Tool | None:
        """Look up a tool by name among enabled skills only."""
        for tool in self.list_enabled_tools():
            if tool.name == name:
                return tool
        return None

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute a tool by name.

        Never raises: an unknown tool and a failing tool both come back as
        an unsuccessful result whose text explains what happened.

        Args:
            name: Tool name
            arguments: Tool arguments

        Returns:
            ToolResult with the tool output
        """
        tool = self.find_tool(name)
        if tool is None:
            logger.warning(f"Unknown tool requested: {name}")
            return ToolResult.fail(f"{UNKNOWN_TOOL_PREFIX}{name}")

        try:
            output = await tool.execute(arguments)
        except Exception as e:
            logger.warning(f"Tool {name} failed: {e}", extra={"tool": name})
            return ToolResult.fail(f"{FAILURE_PREFIX}{e}")

        return ToolResult.ok(str(output), dangerous=tool.dangerous)

    def to_ai_tool_schema(self) -> list[dict[str, Any]]:
        """Get all enabled tool definitions in OpenAI format."""
        return [tool.to_openai_format() for tool in self.list_enabled_tools()]

    def build_skills_prompt(self) -> str:
        """Render enabled skills and their tools for the system prompt.

        Returns:
            Markdown listing, or empty string when nothing is enabled
        """
        skills = [s for s in self.enabled_skills() if s.tools]
        if not skills:
            return ""

        tool_count = sum(len(s.tools) for s in skills)
        lines = [
            "## Available Skills",
            "",
            f"{len(skills)} skill(s) enabled with {tool_count} tool(s).",
        ]
        for skill in skills:
            lines.append(f"\n### {skill.icon} {skill.name}")
            if skill.description:
                lines.append(skill.description)
            for tool in skill.tools:
                marker = " ⚠️ dangerous, requires confirmation" if tool.dangerous else ""
                lines.append(f"- `{tool.signature()}` — {tool.description}{marker}")

        return "\n".join(lines)

    @property
    def available_tools(self) -> list[str]:
        """Names of tools from enabled skills."""
        return [t.name for t in self.list_enabled_tools()]
