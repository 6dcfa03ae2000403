"""Tests for the skill registry and the skill data model."""

from __future__ import annotations

from typing import Any

import pytest

from opspilot.config import SkillsConfig
from opspilot.skills.base import (
    BaseSkill,
    ParamSpec,
    ParamType,
    Skill,
    SkillCategory,
    Tool,
    ToolExecutionError,
    validate_arguments,
)
from opspilot.skills.registry import SkillRegistry
from opspilot.skills.state import InMemorySkillStateStore


async def _echo(params: dict[str, Any]) -> str:
    return f"echo: {params.get('text', '')}"


async def _boom(params: dict[str, Any]) -> str:
    raise ToolExecutionError("disk on fire")


def _tool(name: str, execute=_echo, dangerous: bool = False, **parameters: ParamSpec) -> Tool:
    return Tool(name=name, description=f"{name} tool", dangerous=dangerous, parameters=parameters, execute=execute)


class EchoSkill(BaseSkill):
    id = "skill-echo"
    name = "Echo"
    description = "Echo things back"
    category = SkillCategory.DEVOPS

    def get_tools(self) -> list[Tool]:
        return [
            _tool("echo", text=ParamSpec(description="Text", required=True)),
            _tool("wipe", dangerous=True),
        ]


@pytest.fixture
def registry() -> SkillRegistry:
    registry = SkillRegistry()
    registry.register_builtin(EchoSkill())
    registry.add_custom(Skill(id="custom-1", name="Custom", tools=[_tool("fail", execute=_boom)]))
    return registry


class TestToolModel:
    def test_openai_format(self):
        tool = _tool(
            "restart",
            service=ParamSpec(description="Service", required=True),
            force=ParamSpec(type=ParamType.BOOLEAN, description="Force"),
            level=ParamSpec(description="Level", enum=["low", "high"]),
        )
        schema = tool.to_openai_format()
        assert schema["type"] == "function"
        function = schema["function"]
        assert function["name"] == "restart"
        assert function["parameters"]["required"] == ["service"]
        assert function["parameters"]["properties"]["force"] == {"type": "boolean", "description": "Force"}
        assert function["parameters"]["properties"]["level"]["enum"] == ["low", "high"]

    def test_signature(self):
        tool = _tool(
            "scale",
            deployment=ParamSpec(required=True),
            replicas=ParamSpec(type=ParamType.NUMBER),
        )
        assert tool.signature() == "scale(deployment: string, replicas?: number)"


class TestValidateArguments:
    def test_valid(self):
        tool = _tool("t", n=ParamSpec(type=ParamType.NUMBER, required=True))
        assert validate_arguments(tool, {"n": 3, "extra": "ignored"}) == []

    def test_missing_required(self):
        tool = _tool("t", path=ParamSpec(required=True))
        assert validate_arguments(tool, {}) == ["missing required parameter 'path'"]

    def test_wrong_type(self):
        tool = _tool("t", n=ParamSpec(type=ParamType.NUMBER), flag=ParamSpec(type=ParamType.BOOLEAN))
        errors = validate_arguments(tool, {"n": True, "flag": "yes"})
        assert len(errors) == 2

    def test_enum(self):
        tool = _tool("t", channel=ParamSpec(enum=["feishu", "dingtalk"]))
        assert validate_arguments(tool, {"channel": "feishu"}) == []
        assert "must be one of" in validate_arguments(tool, {"channel": "slack"})[0]


class TestSkillRegistry:
    def test_list_enabled_tools(self, registry: SkillRegistry):
        assert [t.name for t in registry.list_enabled_tools()] == ["echo", "wipe", "fail"]

    def test_disable_hides_tools(self, registry: SkillRegistry):
        assert registry.set_enabled("skill-echo", False)
        assert registry.find_tool("echo") is None
        assert [t.name for t in registry.list_enabled_tools()] == ["fail"]

        assert registry.set_enabled("skill-echo", True)
        assert registry.find_tool("echo") is not None

    def test_set_enabled_unknown(self, registry: SkillRegistry):
        assert registry.set_enabled("nope", False) is False

    @pytest.mark.asyncio
    async def test_execute(self, registry: SkillRegistry):
        result = await registry.execute("echo", {"text": "hi"})
        assert result.success
        assert result.result == "echo: hi"
        assert result.dangerous is False

    @pytest.mark.asyncio
    async def test_execute_reports_dangerous(self, registry: SkillRegistry):
        result = await registry.execute("wipe", {})
        assert result.dangerous is True

    @pytest.mark.asyncio
    async def test_execute_unknown_tool(self, registry: SkillRegistry):
        result = await registry.execute("hallucinated_tool", {})
        assert not result.success
        assert result.result == "Unknown tool: hallucinated_tool"

    @pytest.mark.asyncio
    async def test_execute_disabled_tool_is_unknown(self, registry: SkillRegistry):
        registry.set_enabled("skill-echo", False)
        result = await registry.execute("echo", {"text": "hi"})
        assert result.result == "Unknown tool: echo"

    @pytest.mark.asyncio
    async def test_execute_failure(self, registry: SkillRegistry):
        result = await registry.execute("fail", {})
        assert not result.success
        assert result.result == "Execution failed: disk on fire"

    def test_add_custom_upserts(self, registry: SkillRegistry):
        registry.add_custom(Skill(id="custom-1", name="Replaced", builtin=True, tools=[_tool("other")]))
        skill = registry.get_skill("custom-1")
        assert skill.name == "Replaced"
        assert skill.builtin is False
        assert registry.find_tool("fail") is None
        assert registry.find_tool("other") is not None

    def test_add_custom_cannot_replace_builtin(self, registry: SkillRegistry):
        with pytest.raises(ValueError):
            registry.add_custom(Skill(id="skill-echo", name="Imposter"))

    def test_add_custom_refuses_duplicate_tool_name(self, registry: SkillRegistry):
        with pytest.raises(ValueError, match="already provided by skill-echo"):
            registry.add_custom(Skill(id="custom-2", name="Copycat", tools=[_tool("echo")]))

        assert registry.get_skill("custom-2") is None
        names = [t["function"]["name"] for t in registry.to_ai_tool_schema()]
        assert names.count("echo") == 1

    def test_add_custom_refuses_repeated_tool_name(self, registry: SkillRegistry):
        with pytest.raises(ValueError, match="more than once"):
            registry.add_custom(Skill(id="custom-2", name="Twice", tools=[_tool("ping"), _tool("ping")]))

    def test_add_custom_disabled_may_share_names(self, registry: SkillRegistry):
        registry.add_custom(Skill(id="custom-2", name="Spare", enabled=False, tools=[_tool("echo")]))

        assert registry.get_skill("custom-2").enabled is False
        assert [t.name for t in registry.list_enabled_tools()].count("echo") == 1

    def test_enable_refuses_duplicate_tool_name(self, registry: SkillRegistry):
        registry.add_custom(Skill(id="custom-2", name="Spare", enabled=False, tools=[_tool("echo")]))

        with pytest.raises(ValueError, match="already provided by skill-echo"):
            registry.set_enabled("custom-2", True)
        assert registry.get_skill("custom-2").enabled is False

        registry.set_enabled("skill-echo", False)
        assert registry.set_enabled("custom-2", True) is True
        assert registry.find_tool("echo") is registry.get_skill("custom-2").tools[0]

    def test_remove_custom(self, registry: SkillRegistry):
        assert registry.remove_custom("custom-1") is True
        assert registry.get_skill("custom-1") is None
        assert registry.remove_custom("custom-1") is False

    def test_remove_builtin_refused(self, registry: SkillRegistry):
        assert registry.remove_custom("skill-echo") is False
        assert registry.get_skill("skill-echo") is not None

    def test_to_ai_tool_schema(self, registry: SkillRegistry):
        registry.set_enabled("custom-1", False)
        names = [t["function"]["name"] for t in registry.to_ai_tool_schema()]
        assert names == ["echo", "wipe"]

    def test_build_skills_prompt(self, registry: SkillRegistry):
        prompt = registry.build_skills_prompt()
        assert "### 📦 Echo" in prompt
        assert "`echo(text: string)`" in prompt
        assert "dangerous" in prompt.split("`wipe()`")[1].splitlines()[0]
        assert "2 skill(s) enabled with 3 tool(s)" in prompt

    def test_build_skills_prompt_empty(self):
        assert SkillRegistry().build_skills_prompt() == ""


class TestStatePersistence:
    def test_toggle_is_saved(self):
        store = InMemorySkillStateStore()
        registry = SkillRegistry(state_store=store)
        registry.register_builtin(EchoSkill())

        registry.set_enabled("skill-echo", False)
        assert store.load() == {"skill-echo": False}

    def test_saved_state_applied_on_register(self):
        store = InMemorySkillStateStore({"skill-echo": False})
        registry = SkillRegistry(state_store=store)
        registry.register_builtin(EchoSkill())
        assert registry.get_skill("skill-echo").enabled is False
        assert registry.list_enabled_tools() == []

    def test_sync_states(self, registry: SkillRegistry):
        registry.sync_states({"skill-echo": False, "later-skill": False})
        assert registry.get_skill("skill-echo").enabled is False

        registry.add_custom(Skill(id="later-skill", name="Later"))
        assert registry.get_skill("later-skill").enabled is False

    def test_sync_states_keeps_clashing_skill_disabled(self, registry: SkillRegistry):
        registry.add_custom(Skill(id="custom-2", name="Spare", enabled=False, tools=[_tool("echo")]))

        registry.sync_states({"custom-2": True})

        assert registry.get_skill("custom-2").enabled is False
        assert registry.find_tool("echo") is registry.get_skill("skill-echo").tools[0]

    def test_export_states(self, registry: SkillRegistry):
        registry.set_enabled("custom-1", False)
        assert registry.export_states() == {"skill-echo": True, "custom-1": False}


class TestFromConfig:
    def test_loads_builtins(self, tmp_path):
        registry = SkillRegistry.from_config(
            SkillsConfig(builtin=["shell", "file_ops"]),
            file_ops={"base_path": str(tmp_path)},
        )
        assert {s.id for s in registry.all_skills()} == {"skill-shell", "skill-file-ops"}
        assert registry.find_tool("run_command").dangerous is True

    def test_unknown_builtin_skipped(self):
        registry = SkillRegistry.from_config(SkillsConfig(builtin=["teleport"]))
        assert registry.all_skills() == []

    def test_load_builtin_unknown_raises(self):
        with pytest.raises(ValueError, match="Unknown built-in skill"):
            SkillRegistry().load_builtin("teleport")
