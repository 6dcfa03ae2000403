"""Persistence of skill enablement state.

The registry only needs a ``skill_id -> enabled`` mapping loaded at start-up
and written back after every toggle; where it lives is up to the store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

import yaml

from opspilot.utils import get_logger

logger = get_logger(__name__)

# Key prefix for SKILL.md document states sharing the same store
AGENT_SKILL_PREFIX = "agent:"


def agent_state_key(name: str) -> str:
    return f"{AGENT_SKILL_PREFIX}{name}"


class SkillStateStore(ABC):
    """Load and save skill enablement flags."""

    @abstractmethod
    def load(self) -> dict[str, bool]:
        """Return the persisted mapping (empty when nothing is stored)."""

    @abstractmethod
    def save(self, states: dict[str, bool]) -> None:
        """Persist the full mapping, replacing what was stored."""


class InMemorySkillStateStore(SkillStateStore):
    """Volatile store, used by tests and one-shot runs."""

    def __init__(self, states: dict[str, bool] | None = None):
        self._states = dict(states or {})

    def load(self) -> dict[str, bool]:
        return dict(self._states)

    def save(self, states: dict[str, bool]) -> None:
        self._states = dict(states)


class YamlSkillStateStore(SkillStateStore):
    """Store flags as a flat YAML mapping on disk."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> dict[str, bool]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.warning(f"Ignoring unreadable skill state file {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            return {}

        return {str(k): bool(v) for k, v in data.items()}

    def save(self, states: dict[str, bool]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(dict(sorted(states.items())), f, allow_unicode=True)
        logger.debug("Saved skill states", extra={"path": str(self.path), "count": len(states)})
