"""Skills system for OpsPilot."""

from opspilot.skills.base import (
    BaseSkill,
    ParamSpec,
    ParamType,
    Skill,
    SkillCategory,
    Tool,
    ToolExecutionError,
    ToolResult,
    validate_arguments,
)
from opspilot.skills.custom import SkillRejectedError
from opspilot.skills.registry import SkillRegistry
from opspilot.skills.state import InMemorySkillStateStore, SkillStateStore, YamlSkillStateStore

__all__ = [
    "BaseSkill",
    "ParamSpec",
    "ParamType",
    "Skill",
    "SkillCategory",
    "Tool",
    "ToolExecutionError",
    "ToolResult",
    "validate_arguments",
    "SkillRejectedError",
    "SkillRegistry",
    "SkillStateStore",
    "InMemorySkillStateStore",
    "YamlSkillStateStore",
]
