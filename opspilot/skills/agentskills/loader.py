"""SKILL.md parser, directory scanner and prompt renderer."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from opspilot.skills.agentskills.models import AgentSkill, AgentSkillMetadata, SkillSource
from opspilot.skills.state import AGENT_SKILL_PREFIX, SkillStateStore, agent_state_key

logger = logging.getLogger(__name__)

# Frontmatter block followed by the markdown body
FRONTMATTER_RE = re.compile(r"---\r?\n(.*?)\r?\n---\r?\n(.*)\Z", re.DOTALL)

# Flat ``key: value`` frontmatter line
FIELD_RE = re.compile(r"^(\w[\w-]*)\s*:\s*(.+)$")

BUILTIN_SKILLS_DIR = Path(__file__).parent / "builtin"

DEFAULT_MAX_SKILLS = 150
DEFAULT_MAX_CHARS = 30_000


def _parse_fields(block: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for line in block.split("\n"):
        match = FIELD_RE.match(line.rstrip("\r"))
        if match:
            fields[match.group(1)] = match.group(2).strip()
    return fields


def _parse_metadata(raw: str) -> AgentSkillMetadata:
    try:
        parsed = json.loads(raw)
    except ValueError:
        return AgentSkillMetadata()

    if not isinstance(parsed, dict) or not isinstance(parsed.get("openclaw"), dict):
        return AgentSkillMetadata()

    try:
        return AgentSkillMetadata.model_validate(parsed["openclaw"])
    except ValidationError as e:
        logger.debug("Ignoring malformed skill metadata: %s", e)
        return AgentSkillMetadata()


def _parse_allowed_tools(raw: str) -> list[str]:
    try:
        parsed = json.loads(raw)
    except ValueError:
        parsed = None

    if isinstance(parsed, list):
        return [str(item) for item in parsed]
    return [part.strip().replace('"', "") for part in raw.split(",")]


def _clean_description(description: str) -> str:
    description = re.sub(r"^\|?\s*", "", description)
    match = re.fullmatch(r'"(.*)"', description)
    return match.group(1) if match else description


def parse_skill_md(raw: str, file_path: str, source: SkillSource) -> AgentSkill | None:
    """Parse a SKILL.md document.

    Only flat ``key: value`` frontmatter lines are understood. ``metadata``
    is read as JSON and only its ``openclaw`` object is kept;
    ``allowed-tools`` is a JSON array or a comma-separated list.

    Args:
        raw: Document text
        file_path: Where the document came from
        source: Origin tag

    Returns:
        The parsed skill, or None when the frontmatter or ``name`` is missing
    """
    match = FRONTMATTER_RE.match(raw)
    if not match:
        return None

    fields = _parse_fields(match.group(1))
    name = fields.get("name")
    if not name:
        return None

    metadata = _parse_metadata(fields["metadata"]) if "metadata" in fields else AgentSkillMetadata()
    allowed_tools = _parse_allowed_tools(fields["allowed-tools"]) if "allowed-tools" in fields else None

    return AgentSkill(
        name=name,
        description=_clean_description(fields.get("description") or name),
        body=match.group(2).strip(),
        metadata=metadata,
        source=source,
        allowed_tools=allowed_tools,
        enabled=True,
        file_path=file_path,
    )


def render_skill_md(skill: AgentSkill) -> str:
    """Serialize a skill back into SKILL.md form."""
    lines = [
        "---",
        f"name: {skill.name}",
        f"description: {json.dumps(skill.description, ensure_ascii=False)}",
    ]

    openclaw = skill.metadata.model_dump(exclude_none=True, exclude_defaults=True)
    if openclaw:
        lines.append(f"metadata: {json.dumps({'openclaw': openclaw}, ensure_ascii=False)}")
    if skill.allowed_tools is not None:
        lines.append(f"allowed-tools: {json.dumps(skill.allowed_tools, ensure_ascii=False)}")

    lines.extend(["---", "", skill.body, ""])
    return "\n".join(lines)


def discover_skills(skill_dirs: Iterable[str | Path], source: SkillSource) -> list[AgentSkill]:
    """Scan directories for ``<name>/SKILL.md`` documents.

    Directories are scanned in order; first occurrence of a skill name wins.
    """
    skills: list[AgentSkill] = []
    seen_names: set[str] = set()

    for dir_path in skill_dirs:
        base = Path(dir_path)
        if not base.is_dir():
            logger.debug("Skill directory does not exist: %s", base)
            continue

        for child in sorted(base.iterdir()):
            skill_md = child / "SKILL.md"
            if not skill_md.is_file():
                continue

            try:
                raw = skill_md.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Failed to read %s: %s", skill_md, e)
                continue

            skill = parse_skill_md(raw, str(skill_md), source)
            if skill is None:
                logger.warning("Skipping %s: missing frontmatter or name", skill_md)
                continue
            if skill.name not in seen_names:
                skills.append(skill)
                seen_names.add(skill.name)

    return skills


class AgentSkillCatalog:
    """Cache of skill documents from every source, merged by priority.

    A later source overrides an earlier one with the same name:
    project beats user beats builtin. The cache is built on first use and
    rebuilt after :meth:`add_user_skill` or :meth:`reset`. Enablement flags
    live in an optional state store under ``agent:<name>`` keys.
    """

    def __init__(
        self,
        builtin_dir: str | Path | None = BUILTIN_SKILLS_DIR,
        user_dirs: Iterable[str | Path] = (),
        project_dir: str | Path | None = None,
        state_store: SkillStateStore | None = None,
    ):
        self.builtin_dir = Path(builtin_dir) if builtin_dir else None
        self.user_dirs = [Path(d) for d in user_dirs]
        self.project_dir = Path(project_dir) if project_dir else None
        self._added: dict[str, AgentSkill] = {}
        self._state_store = state_store
        self._disabled: set[str] = set()
        if state_store is not None:
            self._disabled = {
                key[len(AGENT_SKILL_PREFIX):]
                for key, enabled in state_store.load().items()
                if key.startswith(AGENT_SKILL_PREFIX) and not enabled
            }
        self._cache: dict[SkillSource, list[AgentSkill]] | None = None

    def _load_sources(self) -> dict[SkillSource, list[AgentSkill]]:
        builtin = discover_skills([self.builtin_dir], SkillSource.BUILTIN) if self.builtin_dir else []
        user = discover_skills(self.user_dirs, SkillSource.USER)
        user_names = {s.name for s in user}
        user.extend(s for name, s in self._added.items() if name not in user_names)
        project = discover_skills([self.project_dir], SkillSource.PROJECT) if self.project_dir else []

        logger.info(
            "Loaded agent skills: %d builtin, %d user, %d project",
            len(builtin), len(user), len(project),
        )
        return {SkillSource.BUILTIN: builtin, SkillSource.USER: user, SkillSource.PROJECT: project}

    def by_source(self, source: SkillSource) -> list[AgentSkill]:
        if self._cache is None:
            self._cache = self._load_sources()
        return list(self._cache[source])

    def load_all(self) -> list[AgentSkill]:
        """Return all skills, deduplicated by name with source priority applied."""
        merged: dict[str, AgentSkill] = {}
        for source in (SkillSource.BUILTIN, SkillSource.USER, SkillSource.PROJECT):
            for skill in self.by_source(source):
                merged[skill.name] = skill

        for skill in merged.values():
            skill.enabled = skill.name not in self._disabled
        return list(merged.values())

    def get(self, name: str) -> AgentSkill | None:
        for skill in self.load_all():
            if skill.name == name:
                return skill
        return None

    def add_user_skill(self, raw: str, file_path: str = "user://custom/SKILL.md") -> AgentSkill | None:
        """Parse and register a user skill document.

        Returns:
            The parsed skill, or None when the document is invalid
        """
        skill = parse_skill_md(raw, file_path, SkillSource.USER)
        if skill is None:
            return None

        self._added[skill.name] = skill
        self.reset()
        return skill

    def set_enabled(self, name: str, enabled: bool) -> bool:
        if self.get(name) is None:
            return False
        if enabled:
            self._disabled.discard(name)
        else:
            self._disabled.add(name)

        if self._state_store is not None:
            states = self._state_store.load()
            states[agent_state_key(name)] = enabled
            self._state_store.save(states)
        logger.info("Agent skill %s %s", name, "enabled" if enabled else "disabled")
        return True

    def reset(self) -> None:
        """Drop the cache; the next read rescans every source."""
        self._cache = None


def build_agent_skills_prompt(
    skills: list[AgentSkill],
    max_chars: int = DEFAULT_MAX_CHARS,
    max_skills: int = DEFAULT_MAX_SKILLS,
) -> str:
    """Render enabled skill bodies into a system prompt section.

    Stops at ``max_skills`` skills or ``max_chars`` characters, whichever
    comes first, and says so in a trailing notice.
    """
    enabled = [s for s in skills if s.enabled]
    if not enabled:
        return ""

    limited = enabled[:max_skills]
    lines = [
        "## Agent Skills",
        "",
        f"{len(limited)} skill module(s) loaded. Each one carries operating guidance.",
        "",
    ]
    total_chars = len("\n".join(lines))
    included = 0
    truncated_by_chars = False

    for skill in limited:
        emoji = skill.metadata.emoji or "📦"
        section = f"### {emoji} {skill.name}\n> {skill.description}\n\n{skill.body}\n\n---\n"

        if total_chars + len(section) > max_chars:
            truncated_by_chars = True
            break

        lines.append(section)
        total_chars += len(section)
        included += 1

    if truncated_by_chars or len(enabled) > max_skills:
        lines.append(
            f"\n⚠️ Skills truncated: included {included} of {len(enabled)} skill(s) "
            f"(limits: {max_skills} skills, {max_chars} characters)"
        )

    return "\n".join(lines)
