"""Core agent logic for OpsPilot."""

from opspilot.core.agent import (
    AgentLoop,
    PendingConfirmation,
    ToolCallLog,
    ToolEvent,
    ToolEventPhase,
    TurnNotFoundError,
    TurnOutcome,
    TurnState,
)
from opspilot.core.context import Conversation
from opspilot.core.loop_detector import LoopDetectionResult, ToolLoopDetector
from opspilot.core.prompts import SYSTEM_PROMPT_TEMPLATE, build_system_prompt

__all__ = [
    "AgentLoop",
    "Conversation",
    "LoopDetectionResult",
    "PendingConfirmation",
    "ToolCallLog",
    "ToolEvent",
    "ToolEventPhase",
    "ToolLoopDetector",
    "TurnNotFoundError",
    "TurnOutcome",
    "TurnState",
    "build_system_prompt",
    "SYSTEM_PROMPT_TEMPLATE",
]
