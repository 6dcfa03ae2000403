"""Tests for the agent loop controller."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from opspilot.core.agent import (
    EMPTY_RESPONSE_FALLBACK,
    AgentLoop,
    ToolEventPhase,
    TurnNotFoundError,
    TurnState,
)
from opspilot.providers.base import LLMProvider, LLMResponse, ProviderError, ProviderKind, ToolCall
from opspilot.skills.agentskills import AgentSkillCatalog
from opspilot.skills.base import ParamSpec, Skill, Tool, ToolExecutionError
from opspilot.skills.registry import SkillRegistry


class ScriptedProvider(LLMProvider):
    """Returns canned responses in order, repeating the last one."""

    kind = ProviderKind.OPENAI

    def __init__(self, *responses: LLMResponse | Exception):
        self.model = "scripted"
        self.responses = list(responses)
        self.requests: list[list[dict[str, Any]]] = []
        self.tools_seen: list[Any] = []
        self.before_reply = None

    async def chat(self, messages, tools=None, temperature=None, max_tokens=None) -> LLMResponse:
        self.requests.append([dict(m) for m in messages])
        self.tools_seen.append(tools)
        if self.before_reply is not None:
            self.before_reply()
        index = min(len(self.requests) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response


def text(content: str) -> LLMResponse:
    return LLMResponse(content=content)


def calls(*pairs: tuple[str, dict[str, Any]], content: str = "") -> LLMResponse:
    return LLMResponse(
        content=content,
        tool_calls=[ToolCall(id=f"call_{i}", name=name, arguments=args) for i, (name, args) in enumerate(pairs)],
    )


class OpsTools:
    """Tool implementations that count how often they run."""

    def __init__(self):
        self.counts: dict[str, int] = {}
        self.flaky_failures = 1
        self.restart_error: str | None = None

    def _hit(self, name: str) -> int:
        self.counts[name] = self.counts.get(name, 0) + 1
        return self.counts[name]

    async def check(self, params: dict[str, Any]) -> str:
        self._hit("check")
        return f"{params.get('host', 'localhost')} is healthy"

    async def flaky(self, params: dict[str, Any]) -> str:
        if self._hit("flaky") <= self.flaky_failures:
            raise ToolExecutionError("connection reset")
        return "recovered"

    async def broken(self, params: dict[str, Any]) -> str:
        self._hit("broken")
        raise ToolExecutionError("disk on fire")

    async def restart(self, params: dict[str, Any]) -> str:
        self._hit("restart")
        if self.restart_error:
            raise ToolExecutionError(self.restart_error)
        return f"restarted {params['service']}"

    def skill(self) -> Skill:
        return Skill(
            id="skill-ops",
            name="Ops",
            builtin=True,
            tools=[
                Tool(name="check", description="Check a host", execute=self.check,
                     parameters={"host": ParamSpec(description="Host")}),
                Tool(name="flaky", description="Sometimes fails", execute=self.flaky),
                Tool(name="broken", description="Always fails", execute=self.broken),
                Tool(name="restart", description="Restart a service", dangerous=True, execute=self.restart,
                     parameters={"service": ParamSpec(description="Service", required=True)}),
            ],
        )


@pytest.fixture
def ops() -> OpsTools:
    return OpsTools()


@pytest.fixture
def registry(ops: OpsTools) -> SkillRegistry:
    registry = SkillRegistry()
    registry.register_builtin(ops.skill())
    return registry


def make_loop(provider: LLMProvider, registry: SkillRegistry, **kwargs) -> AgentLoop:
    return AgentLoop(provider=provider, registry=registry, **kwargs)


class TestFinalAnswer:
    @pytest.mark.asyncio
    async def test_plain_answer(self, registry):
        provider = ScriptedProvider(text("All systems nominal."))
        outcome = await make_loop(provider, registry).run_turn("status?")

        assert outcome.state == TurnState.FINAL
        assert outcome.content == "All systems nominal."
        assert outcome.rounds == 1
        assert outcome.tool_calls == []

        messages = provider.requests[0]
        assert messages[0]["role"] == "system"
        assert "OpsPilot" in messages[0]["content"]
        assert "`restart(service: string)`" in messages[0]["content"]
        assert messages[-1] == {"role": "user", "content": "status?"}
        assert [t["function"]["name"] for t in provider.tools_seen[0]] == ["check", "flaky", "broken", "restart"]

    @pytest.mark.asyncio
    async def test_empty_answer_uses_fallback(self, registry):
        outcome = await make_loop(ScriptedProvider(text("")), registry).run_turn("hi")
        assert outcome.state == TurnState.FINAL
        assert outcome.content == EMPTY_RESPONSE_FALLBACK

    @pytest.mark.asyncio
    async def test_no_enabled_tools_sends_none(self, registry):
        registry.set_enabled("skill-ops", False)
        provider = ScriptedProvider(text("ok"))
        await make_loop(provider, registry).run_turn("hi")
        assert provider.tools_seen == [None]

    @pytest.mark.asyncio
    async def test_history(self, registry):
        provider = ScriptedProvider(text("ok"))
        history = [
            {"role": "system", "content": "stale prompt"},
            {"role": "user", "content": "earlier question"},
            {"role": "assistant", "content": "earlier answer"},
            {"role": "tool", "content": "stray"},
        ]

        await make_loop(provider, registry).run_turn("follow-up", history=history)

        roles = [(m["role"], m["content"]) for m in provider.requests[0][1:]]
        assert roles == [
            ("user", "earlier question"),
            ("assistant", "earlier answer"),
            ("user", "follow-up"),
        ]

    @pytest.mark.asyncio
    async def test_agent_skills_in_prompt(self, registry, tmp_path):
        skill_dir = tmp_path / "disk-triage"
        skill_dir.mkdir()
        (skill_dir / "SKILL.md").write_text(
            "---\nname: disk-triage\ndescription: Find what fills a disk\n---\nRun df first, then du.\n"
        )
        provider = ScriptedProvider(text("ok"))
        loop = make_loop(provider, registry, catalog=AgentSkillCatalog(builtin_dir=tmp_path))

        await loop.run_turn("disk full")

        system = provider.requests[0][0]["content"]
        assert "## Agent Skills" in system
        assert "Run df first, then du." in system


class TestToolRounds:
    @pytest.mark.asyncio
    async def test_tool_then_answer(self, registry, ops):
        provider = ScriptedProvider(
            calls(("check", {"host": "web-1"})),
            text("web-1 is fine."),
        )

        outcome = await make_loop(provider, registry).run_turn("is web-1 ok?")

        assert outcome.state == TurnState.FINAL
        assert outcome.content == "web-1 is fine."
        assert outcome.rounds == 2
        assert ops.counts == {"check": 1}
        assert outcome.tool_calls[0].result == "web-1 is healthy"
        assert outcome.tool_calls[0].success

        second = provider.requests[1]
        assert second[-2]["role"] == "assistant"
        assert second[-2]["content"].startswith("Calling tools: check(")
        assert second[-1]["role"] == "user"
        assert "Tool results for round 1" in second[-1]["content"]
        assert "[check] (ok)\nweb-1 is healthy" in second[-1]["content"]
        assert all(m["role"] in ("system", "user", "assistant") for m in second)

    @pytest.mark.asyncio
    async def test_max_rounds(self, registry, ops):
        provider = ScriptedProvider(
            calls(("check", {"host": "a"})),
            calls(("check", {"host": "b"})),
            calls(("check", {"host": "c"})),
            text("never reached"),
        )

        outcome = await make_loop(provider, registry, max_tool_rounds=3).run_turn("sweep")

        assert outcome.state == TurnState.MAX_ROUNDS
        assert len(provider.requests) == 3
        assert ops.counts["check"] == 3
        assert outcome.content.startswith("Stopped after 3 tool rounds without a final answer.")
        assert "Tool calls made:" in outcome.content
        assert '1. check({"host": "a"}) [ok]' in outcome.content

    @pytest.mark.asyncio
    async def test_default_round_limit(self, registry):
        provider = ScriptedProvider(*[calls(("check", {"host": f"h{i}"})) for i in range(20)])
        outcome = await make_loop(provider, registry).run_turn("sweep")
        assert outcome.state == TurnState.MAX_ROUNDS
        assert len(provider.requests) == 15

    @pytest.mark.asyncio
    async def test_provider_error(self, registry):
        provider = ScriptedProvider(ProviderError("HTTP 502", provider="openai", status=502))
        outcome = await make_loop(provider, registry).run_turn("hi")

        assert outcome.state == TurnState.ERROR
        assert outcome.content == "❌ Request failed: HTTP 502"

    @pytest.mark.asyncio
    async def test_provider_error_after_tools(self, registry, ops):
        provider = ScriptedProvider(
            calls(("check", {})),
            ProviderError("timeout"),
        )
        outcome = await make_loop(provider, registry).run_turn("hi")
        assert outcome.state == TurnState.ERROR
        assert len(outcome.tool_calls) == 1

    @pytest.mark.asyncio
    async def test_unwrapped_provider_failure_ends_turn(self, registry):
        provider = ScriptedProvider(asyncio.TimeoutError())
        loop = make_loop(provider, registry)

        outcome = await loop.run_turn("hi")

        assert outcome.state == TurnState.ERROR
        assert outcome.content.startswith("❌ Request failed: TimeoutError")
        assert loop.pending_turns == []


class TestRetries:
    @pytest.mark.asyncio
    async def test_retry_once_then_success(self, registry, ops):
        events = []

        async def on_event(event):
            events.append(event.phase)

        provider = ScriptedProvider(calls(("flaky", {})), text("done"))
        outcome = await make_loop(provider, registry, on_event=on_event).run_turn("go")

        entry = outcome.tool_calls[0]
        assert entry.success
        assert entry.attempts == 2
        assert entry.result == "recovered"
        assert events == [ToolEventPhase.START, ToolEventPhase.RETRY, ToolEventPhase.RESULT]

    @pytest.mark.asyncio
    async def test_failure_after_retry(self, registry, ops):
        provider = ScriptedProvider(calls(("broken", {})), text("sorry"))
        outcome = await make_loop(provider, registry).run_turn("go")

        entry = outcome.tool_calls[0]
        assert not entry.success
        assert entry.attempts == 2
        assert ops.counts["broken"] == 2
        assert entry.result == "Execution failed: disk on fire"
        assert "[broken] (failed)" in provider.requests[1][-1]["content"]

    @pytest.mark.asyncio
    async def test_retries_configurable(self, registry, ops):
        provider = ScriptedProvider(calls(("broken", {})), text("sorry"))
        await make_loop(provider, registry, max_retries_per_tool=0).run_turn("go")
        assert ops.counts["broken"] == 1

    @pytest.mark.asyncio
    async def test_unknown_tool_not_retried(self, registry):
        provider = ScriptedProvider(calls(("ghost", {})), text("ok"))
        outcome = await make_loop(provider, registry).run_turn("go")

        entry = outcome.tool_calls[0]
        assert entry.result == "Unknown tool: ghost"
        assert entry.attempts == 1
        assert outcome.state == TurnState.FINAL


class TestLoopDetection:
    @pytest.mark.asyncio
    async def test_identical_calls_blocked(self, registry, ops):
        provider = ScriptedProvider(calls(("check", {"host": "db"})))

        outcome = await make_loop(provider, registry).run_turn("check db")

        assert outcome.state == TurnState.LOOP_BLOCKED
        assert ops.counts["check"] == 4
        assert len(provider.requests) == 5
        assert outcome.content.startswith("⛔ Tool check was called 5 times")
        assert len(outcome.warnings) == 2

    @pytest.mark.asyncio
    async def test_ping_pong_blocked(self, registry, ops):
        provider = ScriptedProvider(*[
            calls(("check", {"host": f"h{i}"})) if i % 2 == 0 else calls(("flaky", {"n": i}))
            for i in range(10)
        ])
        ops.flaky_failures = 0

        outcome = await make_loop(provider, registry).run_turn("bounce")

        assert outcome.state == TurnState.LOOP_BLOCKED
        assert "ping-pong" in outcome.content
        assert len(provider.requests) == 6

    @pytest.mark.asyncio
    async def test_detector_is_per_turn(self, registry, ops):
        provider = ScriptedProvider(calls(("check", {"host": "db"})), text("done"))
        loop = make_loop(provider, registry)
        for _ in range(3):
            provider.requests.clear()
            outcome = await loop.run_turn("check db")
            assert outcome.state == TurnState.FINAL
            assert outcome.warnings == []


class TestConfirmation:
    @pytest.mark.asyncio
    async def test_dangerous_call_suspends_round(self, registry, ops):
        events = []

        async def on_event(event):
            events.append(event)

        provider = ScriptedProvider(
            calls(("restart", {"service": "nginx"}), ("check", {"host": "web-1"}), content="Restarting nginx."),
        )
        loop = make_loop(provider, registry, on_event=on_event)

        outcome = await loop.run_turn("restart nginx")

        assert outcome.needs_confirmation
        assert outcome.pending.tool_name == "restart"
        assert outcome.pending.arguments == {"service": "nginx"}
        assert outcome.content.startswith("⚠️ Confirmation required: restart")
        assert ops.counts == {}
        assert loop.pending_turns == [outcome.turn_id]
        assert events[-1].phase == ToolEventPhase.CONFIRM_REQUIRED
        assert events[-1].dangerous

    @pytest.mark.asyncio
    async def test_confirm_runs_once(self, registry, ops):
        provider = ScriptedProvider(calls(("restart", {"service": "nginx"})))
        loop = make_loop(provider, registry)
        pending = await loop.run_turn("restart nginx")

        outcome = await loop.confirm(pending.turn_id)

        assert outcome.state == TurnState.FINAL
        assert outcome.content == "✅ Executed: restart\n\nrestarted nginx"
        assert ops.counts == {"restart": 1}
        assert len(provider.requests) == 1
        assert loop.pending_turns == []

        with pytest.raises(TurnNotFoundError):
            await loop.confirm(pending.turn_id)
        assert ops.counts == {"restart": 1}

    @pytest.mark.asyncio
    async def test_confirm_failure_not_retried(self, registry, ops):
        ops.restart_error = "permission denied"
        loop = make_loop(ScriptedProvider(calls(("restart", {"service": "nginx"}))), registry)
        pending = await loop.run_turn("restart nginx")

        outcome = await loop.confirm(pending.turn_id)

        assert outcome.content == "❌ Failed: restart\n\nExecution failed: permission denied"
        assert ops.counts == {"restart": 1}
        assert outcome.tool_calls[-1].success is False

    @pytest.mark.asyncio
    async def test_cancel(self, registry, ops):
        loop = make_loop(ScriptedProvider(calls(("restart", {"service": "nginx"}))), registry)
        pending = await loop.run_turn("restart nginx")

        outcome = await loop.cancel(pending.turn_id)

        assert outcome.state == TurnState.CANCELLED
        assert outcome.content == "Cancelled: restart was not executed."
        assert ops.counts == {}
        with pytest.raises(TurnNotFoundError):
            await loop.confirm(pending.turn_id)

    @pytest.mark.asyncio
    async def test_unknown_turn(self, registry):
        loop = make_loop(ScriptedProvider(text("ok")), registry)
        with pytest.raises(TurnNotFoundError):
            await loop.confirm("missing")
        with pytest.raises(TurnNotFoundError):
            await loop.cancel("missing")

    @pytest.mark.asyncio
    async def test_invalid_dangerous_call_rejected_without_confirmation(self, registry, ops):
        provider = ScriptedProvider(calls(("restart", {})), text("I need a service name."))

        outcome = await make_loop(provider, registry).run_turn("restart something")

        assert outcome.state == TurnState.FINAL
        entry = outcome.tool_calls[0]
        assert entry.attempts == 0
        assert not entry.success
        assert "missing required parameter 'service'" in entry.result
        assert ops.counts == {}

    @pytest.mark.asyncio
    async def test_safe_calls_before_dangerous_run(self, registry, ops):
        provider = ScriptedProvider(calls(("check", {"host": "web-1"}), ("restart", {"service": "nginx"})))
        outcome = await make_loop(provider, registry).run_turn("check then restart")

        assert outcome.needs_confirmation
        assert ops.counts == {"check": 1}
        assert [e.name for e in outcome.tool_calls] == ["check"]


class TestAbandon:
    @pytest.mark.asyncio
    async def test_abandon_in_flight(self, registry, ops):
        provider = ScriptedProvider(calls(("check", {})), text("done"))
        loop = make_loop(provider, registry)
        provider.before_reply = lambda: loop.abandon("turn-1")

        outcome = await loop.run_turn("check", turn_id="turn-1")

        assert outcome.state == TurnState.CANCELLED
        assert outcome.content == "Turn abandoned."
        assert ops.counts == {}

    @pytest.mark.asyncio
    async def test_abandon_suspended(self, registry):
        loop = make_loop(ScriptedProvider(calls(("restart", {"service": "nginx"}))), registry)
        pending = await loop.run_turn("restart nginx")

        assert loop.abandon(pending.turn_id) is True
        assert loop.pending_turns == []
        with pytest.raises(TurnNotFoundError):
            await loop.confirm(pending.turn_id)

    def test_abandon_unknown(self, registry):
        loop = make_loop(ScriptedProvider(text("ok")), registry)
        assert loop.abandon("nope") is False


class TestEvents:
    @pytest.mark.asyncio
    async def test_callback_failure_does_not_break_turn(self, registry):
        async def on_event(event):
            raise RuntimeError("ui went away")

        provider = ScriptedProvider(calls(("check", {})), text("done"))
        outcome = await make_loop(provider, registry, on_event=on_event).run_turn("go")
        assert outcome.state == TurnState.FINAL

    @pytest.mark.asyncio
    async def test_loop_warning_event(self, registry):
        phases = []

        async def on_event(event):
            phases.append(event.phase)

        provider = ScriptedProvider(
            calls(("check", {"host": "x"})),
            calls(("check", {"host": "x"})),
            calls(("check", {"host": "x"})),
            text("stopping"),
        )
        outcome = await make_loop(provider, registry, on_event=on_event).run_turn("go")

        assert outcome.state == TurnState.FINAL
        assert ToolEventPhase.LOOP_WARNING in phases
        assert outcome.warnings == ["Tool check has been called 3 times in a row; possible loop."]
