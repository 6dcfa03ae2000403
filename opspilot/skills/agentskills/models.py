"""Data models for SKILL.md instruction documents."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class SkillSource(str, Enum):
    """Origin of a skill document, lowest priority first."""
    BUILTIN = "builtin"
    USER = "user"
    PROJECT = "project"


class SkillRequirements(BaseModel):
    bins: list[str] = Field(default_factory=list)
    config: list[str] = Field(default_factory=list)


class SkillInstallStep(BaseModel):
    kind: str
    id: str | None = None
    label: str | None = None


class AgentSkillMetadata(BaseModel):
    """The ``openclaw`` object carried in the frontmatter ``metadata`` JSON."""
    emoji: str | None = None
    requires: SkillRequirements | None = None
    install: list[SkillInstallStep] = Field(default_factory=list)


class AgentSkill(BaseModel):
    """A parsed SKILL.md document.

    The markdown body is injected verbatim into the system prompt; it
    carries instructions only and registers no tools.
    """
    name: str
    description: str
    body: str
    metadata: AgentSkillMetadata = Field(default_factory=AgentSkillMetadata)
    source: SkillSource = SkillSource.BUILTIN
    allowed_tools: list[str] | None = None
    enabled: bool = True
    file_path: str = ""
