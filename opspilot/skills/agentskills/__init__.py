"""SKILL.md instruction documents.

Documents are discovered from builtin, user and project directories by
scanning for ``<name>/SKILL.md`` files, merged by priority, and rendered
into the system prompt.
"""

from opspilot.skills.agentskills.loader import (
    AgentSkillCatalog,
    build_agent_skills_prompt,
    discover_skills,
    parse_skill_md,
    render_skill_md,
)
from opspilot.skills.agentskills.models import AgentSkill, AgentSkillMetadata, SkillSource

__all__ = [
    "AgentSkill",
    "AgentSkillCatalog",
    "AgentSkillMetadata",
    "SkillSource",
    "build_agent_skills_prompt",
    "discover_skills",
    "parse_skill_md",
    "render_skill_md",
]
