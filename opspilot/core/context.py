"""Per-turn conversation buffer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from opspilot.utils import get_logger

logger = get_logger(__name__)

ALLOWED_ROLES = ("system", "user", "assistant")


@dataclass
class Conversation:
    """Ordered, append-only message list fed to the provider.

    Tool results are carried as user-role text so every provider
    protocol can consume the same conversation.
    """

    system_prompt: str
    messages: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def start(
        cls,
        system_prompt: str,
        user_message: str,
        history: Iterable[dict[str, Any]] | None = None,
    ) -> "Conversation":
        """Create a conversation from prior history plus the new user message.

        Earlier ``system`` entries in ``history`` are dropped; the turn has
        exactly one system prompt.
        """
        conversation = cls(system_prompt=system_prompt)
        for message in history or []:
            role = message.get("role")
            if role in ("user", "assistant"):
                conversation._append(role, str(message.get("content") or ""))
            else:
                logger.debug(f"Dropping history message with role {role!r}")
        conversation.add_user_message(user_message)
        return conversation

    def _append(self, role: str, content: str) -> None:
        if role not in ALLOWED_ROLES:
            raise ValueError(f"Unsupported message role: {role}")
        self.messages.append({"role": role, "content": content})

    def add_user_message(self, content: str) -> None:
        self._append("user", content)

    def add_assistant_message(self, content: str) -> None:
        self._append("assistant", content)

    def add_tool_results(self, summary: str) -> None:
        """Append a round's tool results as a synthetic user message."""
        self._append("user", summary)

    def to_messages(self) -> list[dict[str, Any]]:
        """Full message list with the system prompt first."""
        return [{"role": "system", "content": self.system_prompt}] + [dict(m) for m in self.messages]

    def __len__(self) -> int:
        return len(self.messages)
