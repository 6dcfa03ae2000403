"""Detection of runaway tool-call patterns within a single turn."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Any

from opspilot.utils import canonical_json, get_logger

logger = get_logger(__name__)

PING_PONG_WINDOW = 6


@dataclass(frozen=True)
class ToolCallRecord:
    name: str
    args_hash: str
    timestamp: float


@dataclass(frozen=True)
class LoopDetectionResult:
    blocked: bool = False
    warning: bool = False
    message: str | None = None


class ToolLoopDetector:
    """Flag repeated identical calls and two-tool oscillation.

    One detector belongs to one turn. Arguments are fingerprinted as
    canonical JSON (sorted keys), so ``{"a": 1, "b": 2}`` and
    ``{"b": 2, "a": 1}`` count as the same call.

    Example:
        >>> detector = ToolLoopDetector()
        >>> for _ in range(4):
        ...     detector.record("list_directory", {"path": "."})
        >>> detector.record("list_directory", {"path": "."}).blocked
        True
    """

    def __init__(
        self,
        history_size: int = 30,
        warning_threshold: int = 3,
        block_threshold: int = 5,
    ):
        self.history_size = history_size
        self.warning_threshold = warning_threshold
        self.block_threshold = block_threshold
        self._history: deque[ToolCallRecord] = deque(maxlen=history_size)

    @property
    def history(self) -> list[ToolCallRecord]:
        return list(self._history)

    def record(self, name: str, arguments: dict[str, Any]) -> LoopDetectionResult:
        """Record a tool call and classify the recent history.

        Args:
            name: Tool name
            arguments: Call arguments

        Returns:
            LoopDetectionResult; ``blocked`` means the turn must stop
        """
        entry = ToolCallRecord(name=name, args_hash=canonical_json(arguments), timestamp=time.time())
        self._history.append(entry)

        tail = list(self._history)[-self.block_threshold:]
        identical_count = sum(
            1 for r in tail if r.name == entry.name and r.args_hash == entry.args_hash
        )

        if identical_count >= self.block_threshold:
            logger.warning(f"Blocking repeated tool call: {name}", extra={"count": identical_count})
            return LoopDetectionResult(
                blocked=True,
                warning=True,
                message=(
                    f"Tool {name} was called {identical_count} times in a row with the same "
                    "arguments; stopping to prevent an infinite loop."
                ),
            )

        ping_pong = self._ping_pong_pair()
        if ping_pong:
            first, second = ping_pong
            logger.warning(f"Blocking ping-pong between {first} and {second}")
            return LoopDetectionResult(
                blocked=True,
                warning=True,
                message=f"Detected a ping-pong loop between {first} and {second}; stopping.",
            )

        if identical_count >= self.warning_threshold:
            return LoopDetectionResult(
                blocked=False,
                warning=True,
                message=f"Tool {name} has been called {identical_count} times in a row; possible loop.",
            )

        return LoopDetectionResult()

    def _ping_pong_pair(self) -> tuple[str, str] | None:
        if len(self._history) < PING_PONG_WINDOW:
            return None

        window = list(self._history)[-PING_PONG_WINDOW:]
        first, second = window[0].name, window[1].name
        if first == second:
            return None

        for index, record in enumerate(window):
            if record.name != (first if index % 2 == 0 else second):
                return None
        return first, second

    def reset(self) -> None:
        """Forget all recorded calls."""
        self._history.clear()
