"""Agent loop controller for OpsPilot."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from opspilot.core.context import Conversation
from opspilot.core.loop_detector import ToolLoopDetector
from opspilot.core.prompts import build_system_prompt, build_tool_results_message
from opspilot.providers.base import ProviderError, ToolCall
from opspilot.skills.agentskills.loader import build_agent_skills_prompt
from opspilot.skills.base import Tool, ToolResult, validate_arguments
from opspilot.utils import generate_uuid, get_logger, safe_json_dumps, truncate_string

if TYPE_CHECKING:
    from opspilot.providers.base import LLMProvider
    from opspilot.skills.agentskills.loader import AgentSkillCatalog
    from opspilot.skills.registry import SkillRegistry

logger = get_logger(__name__)

EMPTY_RESPONSE_FALLBACK = "I'm not sure how to respond to that."
SUMMARY_RESULT_LENGTH = 200


class TurnState(str, Enum):
    AWAIT_MODEL = "await_model"
    TOOL_CALLS = "tool_calls"
    EXECUTING = "executing"
    CONFIRM_REQUIRED = "confirm_required"
    FINAL = "final"
    MAX_ROUNDS = "max_rounds"
    LOOP_BLOCKED = "loop_blocked"
    ERROR = "error"
    CANCELLED = "cancelled"


class ToolEventPhase(str, Enum):
    START = "start"
    RESULT = "result"
    ERROR = "error"
    RETRY = "retry"
    LOOP_WARNING = "loop_warning"
    LOOP_BLOCKED = "loop_blocked"
    CONFIRM_REQUIRED = "confirm_required"


class TurnNotFoundError(LookupError):
    """No suspended turn with this id is awaiting confirmation."""

    def __init__(self, turn_id: str):
        super().__init__(f"No pending turn: {turn_id}")
        self.turn_id = turn_id


@dataclass
class ToolEvent:
    """Progress notification for a single tool call."""

    phase: ToolEventPhase
    turn_id: str
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    result: str | None = None
    error: str | None = None
    meta: str | None = None
    dangerous: bool = False
    timestamp: float = field(default_factory=time.time)


ToolEventCallback = Callable[[ToolEvent], Awaitable[None]]


@dataclass
class ToolCallLog:
    """One executed (or refused) tool call within a turn."""

    round: int
    name: str
    arguments: dict[str, Any]
    result: str
    success: bool
    attempts: int = 1
    duration_ms: int = 0


@dataclass
class PendingConfirmation:
    """A dangerous call waiting for the user's decision."""

    tool_call_id: str
    tool_name: str
    description: str
    arguments: dict[str, Any]

    def render(self) -> str:
        args = safe_json_dumps(self.arguments)
        return (
            f"⚠️ Confirmation required: {self.tool_name}\n\n"
            f"{self.description}\n\n"
            f"Arguments: {args}"
        )


@dataclass
class TurnOutcome:
    """What a controller operation produced for the caller."""

    turn_id: str
    state: TurnState
    content: str
    tool_calls: list[ToolCallLog] = field(default_factory=list)
    pending: PendingConfirmation | None = None
    warnings: list[str] = field(default_factory=list)
    rounds: int = 0

    @property
    def needs_confirmation(self) -> bool:
        return self.state == TurnState.CONFIRM_REQUIRED


@dataclass
class _Turn:
    turn_id: str
    conversation: Conversation
    detector: ToolLoopDetector
    state: TurnState = TurnState.AWAIT_MODEL
    rounds: int = 0
    tool_calls: list[ToolCallLog] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    pending: PendingConfirmation | None = None
    abandoned: bool = False


class AgentLoop:
    """Drive one user turn through model calls and tool executions.

    Each turn owns its conversation buffer and loop detector. A turn ends
    in ``FINAL``, ``MAX_ROUNDS``, ``LOOP_BLOCKED``, ``ERROR`` or
    ``CANCELLED``, or is suspended in ``CONFIRM_REQUIRED`` until
    :meth:`confirm` or :meth:`cancel` settles its single pending call.

    Example:
        >>> loop = AgentLoop(provider=provider, registry=registry)
        >>> outcome = await loop.run_turn("How full is the disk?")
        >>> if outcome.needs_confirmation:
        ...     outcome = await loop.confirm(outcome.turn_id)
        >>> print(outcome.content)
    """

    def __init__(
        self,
        provider: "LLMProvider",
        registry: "SkillRegistry",
        catalog: "AgentSkillCatalog | None" = None,
        agent_name: str = "OpsPilot",
        max_tool_rounds: int = 15,
        max_retries_per_tool: int = 1,
        loop_history_size: int = 30,
        loop_warning_threshold: int = 3,
        loop_block_threshold: int = 5,
        max_skills_prompt_chars: int = 30_000,
        max_prompt_skills: int = 150,
        custom_instructions: str = "",
        on_event: ToolEventCallback | None = None,
    ):
        """Initialize the agent loop.

        Args:
            provider: LLM provider adapter
            registry: Skill registry used for tool lookup and execution
            catalog: Optional SKILL.md catalog rendered into the system prompt
            agent_name: Display name used in the system prompt
            max_tool_rounds: Provider calls allowed per turn
            max_retries_per_tool: Extra attempts after a failed tool call
            loop_history_size: Calls remembered by the loop detector
            loop_warning_threshold: Identical calls that raise a warning
            loop_block_threshold: Identical calls that stop the turn
            max_skills_prompt_chars: Character budget for SKILL.md bodies
            max_prompt_skills: Maximum number of SKILL.md bodies
            custom_instructions: Extra instructions appended to the prompt
            on_event: Async callback receiving tool events
        """
        self.provider = provider
        self.registry = registry
        self.catalog = catalog
        self.agent_name = agent_name
        self.max_tool_rounds = max_tool_rounds
        self.max_retries_per_tool = max_retries_per_tool
        self.loop_history_size = loop_history_size
        self.loop_warning_threshold = loop_warning_threshold
        self.loop_block_threshold = loop_block_threshold
        self.max_skills_prompt_chars = max_skills_prompt_chars
        self.max_prompt_skills = max_prompt_skills
        self.custom_instructions = custom_instructions
        self.on_event = on_event

        self._turns: dict[str, _Turn] = {}

    def build_system_prompt(self) -> str:
        agent_skills_prompt = ""
        if self.catalog is not None:
            agent_skills_prompt = build_agent_skills_prompt(
                self.catalog.load_all(),
                max_chars=self.max_skills_prompt_chars,
                max_skills=self.max_prompt_skills,
            )

        return build_system_prompt(
            agent_name=self.agent_name,
            skills_prompt=self.registry.build_skills_prompt(),
            agent_skills_prompt=agent_skills_prompt,
            custom_instructions=self.custom_instructions,
            model_info=f"{self.provider.model} ({self.provider.provider_name})",
        )

    @property
    def pending_turns(self) -> list[str]:
        """Ids of turns suspended for confirmation."""
        return [t.turn_id for t in self._turns.values() if t.state == TurnState.CONFIRM_REQUIRED]

    async def run_turn(
        self,
        user_text: str,
        history: list[dict[str, Any]] | None = None,
        turn_id: str | None = None,
    ) -> TurnOutcome:
        """Process one user message until a final answer or a stop condition.

        Args:
            user_text: The user's message
            history: Earlier user/assistant messages of the session
            turn_id: Id to use for this turn (generated when omitted)

        Returns:
            TurnOutcome describing how the turn ended or why it is suspended
        """
        turn = _Turn(
            turn_id=turn_id or generate_uuid(),
            conversation=Conversation.start(self.build_system_prompt(), user_text, history),
            detector=ToolLoopDetector(
                history_size=self.loop_history_size,
                warning_threshold=self.loop_warning_threshold,
                block_threshold=self.loop_block_threshold,
            ),
        )
        self._turns[turn.turn_id] = turn

        logger.info(
            "Starting turn",
            extra={"turn_id": turn.turn_id, "preview": truncate_string(user_text, 50)},
        )

        try:
            return await self._drive(turn)
        finally:
            if turn.state != TurnState.CONFIRM_REQUIRED:
                self._turns.pop(turn.turn_id, None)

    async def _drive(self, turn: _Turn) -> TurnOutcome:
        tools = self.registry.to_ai_tool_schema() or None

        while turn.rounds < self.max_tool_rounds:
            turn.rounds += 1
            turn.state = TurnState.AWAIT_MODEL

            start_time = time.time()
            try:
                response = await self.provider.chat(
                    messages=turn.conversation.to_messages(),
                    tools=tools,
                )
            except ProviderError as e:
                logger.error(
                    f"Provider call failed: {e}",
                    extra={"turn_id": turn.turn_id, "round": turn.rounds, "status": e.status},
                )
                return self._finish(turn, TurnState.ERROR, f"❌ Request failed: {e}")
            except Exception as e:
                logger.error(
                    f"Unexpected provider failure: {e}",
                    extra={"turn_id": turn.turn_id, "round": turn.rounds},
                    exc_info=True,
                )
                return self._finish(turn, TurnState.ERROR, f"❌ Request failed: {type(e).__name__}: {e}")

            logger.info(
                "Provider call complete",
                extra={
                    "turn_id": turn.turn_id,
                    "round": turn.rounds,
                    "latency_ms": int((time.time() - start_time) * 1000),
                    "tool_call_count": len(response.tool_calls or []),
                },
            )

            if turn.abandoned:
                return self._abandoned(turn)

            if not response.tool_calls:
                content = response.content or EMPTY_RESPONSE_FALLBACK
                if not response.content:
                    logger.warning("Provider returned empty content", extra={"turn_id": turn.turn_id})
                turn.conversation.add_assistant_message(content)
                return self._finish(turn, TurnState.FINAL, content)

            turn.state = TurnState.TOOL_CALLS
            round_logs: list[ToolCallLog] = []

            for call in response.tool_calls:
                detection = turn.detector.record(call.name, call.arguments)
                if detection.blocked:
                    await self._emit(turn, ToolEventPhase.LOOP_BLOCKED, call, meta=detection.message)
                    return self._finish(
                        turn,
                        TurnState.LOOP_BLOCKED,
                        f"⛔ {detection.message}\n\n{self._summarize_calls(turn.tool_calls)}",
                    )
                if detection.warning and detection.message:
                    turn.warnings.append(detection.message)
                    logger.warning(detection.message, extra={"turn_id": turn.turn_id})
                    await self._emit(turn, ToolEventPhase.LOOP_WARNING, call, meta=detection.message)

                tool = self.registry.find_tool(call.name)
                problems = validate_arguments(tool, call.arguments) if tool is not None else []

                if tool is not None and tool.dangerous and not problems:
                    return await self._suspend(turn, call, tool, response.content)

                turn.state = TurnState.EXECUTING
                if problems:
                    entry = await self._reject_invalid(turn, call, problems)
                else:
                    entry = await self._execute_with_retry(turn, call, tool)

                if turn.abandoned:
                    return self._abandoned(turn)
                round_logs.append(entry)

            turn.conversation.add_assistant_message(
                response.content or self._describe_calls(response.tool_calls)
            )
            turn.conversation.add_tool_results(
                build_tool_results_message(
                    turn.rounds, [(e.name, e.result, e.success) for e in round_logs]
                )
            )

        logger.warning(
            f"Max tool rounds ({self.max_tool_rounds}) reached",
            extra={"turn_id": turn.turn_id},
        )
        return self._finish(
            turn,
            TurnState.MAX_ROUNDS,
            f"Stopped after {self.max_tool_rounds} tool rounds without a final answer.\n\n"
            f"{self._summarize_calls(turn.tool_calls)}",
        )

    async def _suspend(self, turn: _Turn, call: ToolCall, tool: Tool, content: str) -> TurnOutcome:
        turn.pending = PendingConfirmation(
            tool_call_id=call.id,
            tool_name=tool.name,
            description=tool.description,
            arguments=dict(call.arguments),
        )
        if content:
            turn.conversation.add_assistant_message(content)

        logger.info(
            f"Awaiting confirmation for {tool.name}",
            extra={"turn_id": turn.turn_id, "tool": tool.name},
        )
        await self._emit(turn, ToolEventPhase.CONFIRM_REQUIRED, call, dangerous=True)
        return self._finish(turn, TurnState.CONFIRM_REQUIRED, turn.pending.render())

    async def _reject_invalid(self, turn: _Turn, call: ToolCall, problems: list[str]) -> ToolCallLog:
        text = f"Invalid arguments for {call.name}: {'; '.join(problems)}"
        entry = ToolCallLog(
            round=turn.rounds,
            name=call.name,
            arguments=call.arguments,
            result=text,
            success=False,
            attempts=0,
        )
        turn.tool_calls.append(entry)
        await self._emit(turn, ToolEventPhase.ERROR, call, error=text)
        return entry

    async def _execute_with_retry(self, turn: _Turn, call: ToolCall, tool: Tool | None) -> ToolCallLog:
        await self._emit(turn, ToolEventPhase.START, call)

        start_time = time.time()
        attempts = 0
        result: ToolResult | None = None

        while True:
            attempts += 1
            result = await self.registry.execute(call.name, call.arguments)
            # Unknown tools fail the same way every time
            if result.success or tool is None or attempts > self.max_retries_per_tool:
                break

            logger.info(
                f"Retrying tool {call.name}",
                extra={"turn_id": turn.turn_id, "attempt": attempts + 1, "error": result.result},
            )
            await self._emit(turn, ToolEventPhase.RETRY, call, error=result.result)

        duration_ms = int((time.time() - start_time) * 1000)
        entry = ToolCallLog(
            round=turn.rounds,
            name=call.name,
            arguments=call.arguments,
            result=result.result,
            success=result.success,
            attempts=attempts,
            duration_ms=duration_ms,
        )
        turn.tool_calls.append(entry)

        logger.info(
            "Tool execution complete",
            extra={
                "turn_id": turn.turn_id,
                "tool": call.name,
                "success": result.success,
                "attempts": attempts,
                "duration_ms": duration_ms,
            },
        )

        if result.success:
            await self._emit(turn, ToolEventPhase.RESULT, call, result=result.result)
        else:
            await self._emit(turn, ToolEventPhase.ERROR, call, error=result.result)
        return entry

    async def confirm(self, turn_id: str) -> TurnOutcome:
        """Execute the pending dangerous call of a suspended turn exactly once.

        The result becomes the turn's final answer; the model is not called
        again.

        Raises:
            TurnNotFoundError: If no turn with this id awaits confirmation
        """
        turn, pending = self._take_pending(turn_id)
        turn.state = TurnState.EXECUTING
        call = ToolCall(id=pending.tool_call_id, name=pending.tool_name, arguments=pending.arguments)

        await self._emit(turn, ToolEventPhase.START, call, dangerous=True)
        start_time = time.time()
        result = await self.registry.execute(pending.tool_name, pending.arguments)
        duration_ms = int((time.time() - start_time) * 1000)

        turn.tool_calls.append(
            ToolCallLog(
                round=turn.rounds,
                name=pending.tool_name,
                arguments=pending.arguments,
                result=result.result,
                success=result.success,
                duration_ms=duration_ms,
            )
        )
        logger.info(
            f"Confirmed tool {pending.tool_name} executed",
            extra={"turn_id": turn_id, "success": result.success, "duration_ms": duration_ms},
        )

        if result.success:
            await self._emit(turn, ToolEventPhase.RESULT, call, result=result.result, dangerous=True)
            content = f"✅ Executed: {pending.tool_name}\n\n{result.result}"
        else:
            await self._emit(turn, ToolEventPhase.ERROR, call, error=result.result, dangerous=True)
            content = f"❌ Failed: {pending.tool_name}\n\n{result.result}"

        turn.conversation.add_assistant_message(content)
        return self._finish(turn, TurnState.FINAL, content)

    async def cancel(self, turn_id: str) -> TurnOutcome:
        """Decline the pending call of a suspended turn; the tool never runs.

        Raises:
            TurnNotFoundError: If no turn with this id awaits confirmation
        """
        turn, pending = self._take_pending(turn_id)
        logger.info(f"Confirmation declined for {pending.tool_name}", extra={"turn_id": turn_id})
        return self._finish(
            turn,
            TurnState.CANCELLED,
            f"Cancelled: {pending.tool_name} was not executed.",
        )

    def abandon(self, turn_id: str) -> bool:
        """Stop a turn from making further progress.

        A call already in flight completes, but its result is discarded and
        the turn ends as ``CANCELLED``. A suspended turn is dropped.

        Returns:
            False when the turn is unknown or already finished
        """
        turn = self._turns.get(turn_id)
        if turn is None:
            return False

        turn.abandoned = True
        if turn.state == TurnState.CONFIRM_REQUIRED:
            turn.pending = None
            turn.state = TurnState.CANCELLED
            del self._turns[turn_id]

        logger.info("Turn abandoned", extra={"turn_id": turn_id})
        return True

    def _take_pending(self, turn_id: str) -> tuple[_Turn, PendingConfirmation]:
        turn = self._turns.get(turn_id)
        if turn is None or turn.state != TurnState.CONFIRM_REQUIRED or turn.pending is None:
            raise TurnNotFoundError(turn_id)

        # Settle before any await so a second confirm cannot run the call again
        del self._turns[turn_id]
        pending, turn.pending = turn.pending, None
        return turn, pending

    def _abandoned(self, turn: _Turn) -> TurnOutcome:
        logger.info("Discarding result of abandoned turn", extra={"turn_id": turn.turn_id})
        return self._finish(turn, TurnState.CANCELLED, "Turn abandoned.")

    def _finish(self, turn: _Turn, state: TurnState, content: str) -> TurnOutcome:
        turn.state = state
        return TurnOutcome(
            turn_id=turn.turn_id,
            state=state,
            content=content,
            tool_calls=list(turn.tool_calls),
            pending=turn.pending if state == TurnState.CONFIRM_REQUIRED else None,
            warnings=list(turn.warnings),
            rounds=turn.rounds,
        )

    async def _emit(
        self,
        turn: _Turn,
        phase: ToolEventPhase,
        call: ToolCall,
        result: str | None = None,
        error: str | None = None,
        meta: str | None = None,
        dangerous: bool = False,
    ) -> None:
        if self.on_event is None:
            return

        event = ToolEvent(
            phase=phase,
            turn_id=turn.turn_id,
            tool_name=call.name,
            arguments=call.arguments,
            result=result,
            error=error,
            meta=meta,
            dangerous=dangerous,
        )
        try:
            await self.on_event(event)
        except Exception as e:
            logger.warning(f"Tool event callback failed: {e}", extra={"phase": phase.value})

    @staticmethod
    def _describe_calls(calls: list[ToolCall]) -> str:
        return "Calling tools: " + ", ".join(f"{c.name}({c.arguments_json})" for c in calls)

    @staticmethod
    def _summarize_calls(logs: list[ToolCallLog]) -> str:
        if not logs:
            return "No tool calls were completed."

        lines = ["Tool calls made:"]
        for index, entry in enumerate(logs, start=1):
            status = "ok" if entry.success else "failed"
            lines.append(
                f"{index}. {entry.name}({safe_json_dumps(entry.arguments)}) [{status}]: "
                f"{truncate_string(entry.result, SUMMARY_RESULT_LENGTH)}"
            )
        return "\n".join(lines)
