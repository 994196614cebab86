"""Tests for recovery bookkeeping, strategy rotation and the recovery nodes."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

_counter = iter(range(1_000_000))


def _ai(content: str = "") -> AIMessage:
    return AIMessage(content=content)


def _err(content: str = "Permission denied", name: str = "write_file") -> ToolMessage:
    return ToolMessage(content=content, name=name, status="error", tool_call_id=f"call_{next(_counter)}")


def _ok(content: str = "ok", name: str = "read_file") -> ToolMessage:
    return ToolMessage(content=content, name=name, status="success", tool_call_id=f"call_{next(_counter)}")


def _failing_transcript() -> list:
    transcript = [HumanMessage(content="Add a config loader")]
    for name in ("write_file", "mkdir", "touch"):
        transcript += [_ai(f"running {name}"), _err(name=name)]
    return transcript


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _fake_llm(response: AIMessage) -> MagicMock:
    llm = MagicMock()
    llm.bind_tools.return_value = llm
    llm.invoke.return_value = response
    return llm


def _diagnosis_response(text: str = "Target directory is read-only; write under /tmp") -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[{"id": "call_diag", "name": "diagnose_error", "args": {"diagnosis": text}}],
    )


# ---------------------------------------------------------------------------
# 1. Strategy rotation
# ---------------------------------------------------------------------------

class TestStrategyRotation:
    def test_first_four_attempts_wrap_around(self):
        from warden.core.recovery import STRATEGY_ROTATION, select_strategy

        indices = [STRATEGY_ROTATION.index(select_strategy(n)) for n in (1, 2, 3, 4)]
        assert indices == [0, 1, 2, 0]

    def test_custom_rotation(self):
        from warden.core.recovery import RecoveryStrategy, select_strategy

        rotation = [RecoveryStrategy.SUMMARY_PERSPECTIVE, RecoveryStrategy.FRESH_PERSPECTIVE]
        assert select_strategy(1, rotation) == RecoveryStrategy.SUMMARY_PERSPECTIVE
        assert select_strategy(2, rotation) == RecoveryStrategy.FRESH_PERSPECTIVE
        assert select_strategy(3, rotation) == RecoveryStrategy.SUMMARY_PERSPECTIVE

    def test_empty_rotation_rejected(self):
        from warden.core.recovery import select_strategy

        with pytest.raises(ValueError):
            select_strategy(1, [])

    def test_every_strategy_has_a_role(self):
        from warden.core.recovery import STRATEGY_ROLES, STRATEGY_ROTATION

        assert [STRATEGY_ROLES[s] for s in STRATEGY_ROTATION] == ["programmer", "planner", "summarizer"]


# ---------------------------------------------------------------------------
# 2. Circuit breaker
# ---------------------------------------------------------------------------

class TestCircuitBreaker:
    def test_sixth_attempt_requests_human_help(self):
        from warden.core.recovery import HumanHelpRequest, RecoveryState, RecoveryStrategy, start_attempt

        state = RecoveryState(thread_id="t1")
        outcomes = [start_attempt(state, max_attempts=5) for _ in range(6)]

        assert all(isinstance(o, RecoveryStrategy) for o in outcomes[:5])
        assert isinstance(outcomes[5], HumanHelpRequest)
        assert outcomes[5].retry_count == 6

    def test_breaker_stays_tripped(self):
        from warden.core.recovery import HumanHelpRequest, RecoveryState, start_attempt

        state = RecoveryState(thread_id="t1", retry_count=5)
        assert isinstance(start_attempt(state, 5), HumanHelpRequest)
        assert isinstance(start_attempt(state, 5), HumanHelpRequest)
        assert state.retry_count == 7

    def test_help_request_text(self):
        from warden.core.recovery import HumanHelpRequest

        req = HumanHelpRequest(thread_id="t1", retry_count=6)
        assert "6 times" in req.message
        assert "circuit breaker" in req.message
        assert req.help_request.startswith("Repeated failures after 6 recovery attempts")


# ---------------------------------------------------------------------------
# 3. RecoveryStateStore
# ---------------------------------------------------------------------------

class TestRecoveryStateStore:
    def test_get_or_create_is_lazy_and_stable(self):
        from warden.core.recovery import RecoveryStateStore

        store = RecoveryStateStore(clock=FakeClock())
        assert store.get("a") is None
        first = store.get_or_create("a")
        first.retry_count = 3
        assert store.get_or_create("a") is first
        assert store.get("a").retry_count == 3
        assert "a" in store and len(store) == 1

    def test_ttl_evicts_idle_threads(self):
        from warden.core.recovery import RecoveryStateStore

        clock = FakeClock()
        store = RecoveryStateStore(ttl_seconds=60, max_entries=0, clock=clock)
        store.get_or_create("a").retry_count = 4

        clock.now += 61
        assert store.get("a") is None
        assert store.get_or_create("a").retry_count == 0

    def test_access_refreshes_ttl(self):
        from warden.core.recovery import RecoveryStateStore

        clock = FakeClock()
        store = RecoveryStateStore(ttl_seconds=60, max_entries=0, clock=clock)
        store.get_or_create("a")
        clock.now += 50
        store.get_or_create("a")
        clock.now += 50
        assert store.get("a") is not None

    def test_lru_bound(self):
        from warden.core.recovery import RecoveryStateStore

        store = RecoveryStateStore(ttl_seconds=0, max_entries=2, clock=FakeClock())
        store.get_or_create("a")
        store.get_or_create("b")
        store.get_or_create("a")
        store.get_or_create("c")
        assert "b" not in store
        assert "a" in store and "c" in store

    def test_reset_and_clear(self):
        from warden.core.recovery import RecoveryStateStore

        store = RecoveryStateStore(clock=FakeClock())
        store.get_or_create("a")
        store.get_or_create("b")
        store.reset("a")
        assert "a" not in store
        store.clear()
        assert len(store) == 0


# ---------------------------------------------------------------------------
# 4. Context & bookkeeping
# ---------------------------------------------------------------------------

class TestRecoveryContext:
    def test_defaults_for_missing_context(self):
        from warden.core.recovery import build_recovery_context

        ctx = build_recovery_context(_failing_transcript())
        assert ctx.current_task == "No current task recorded."
        assert ctx.completed_tasks == "No tasks completed yet."
        assert ctx.codebase_tree == "No codebase tree generated yet."
        assert "## Error Pattern Analysis:" in ctx.error_analysis
        assert ctx.alternative_approaches.count("\n- ") == 5

    def test_history_limited_to_last_ten_messages(self):
        from warden.core.recovery import build_recovery_context

        transcript = [_ai(f"step {i}") for i in range(15)]
        ctx = build_recovery_context(transcript)
        assert "step 4" not in ctx.conversation_history
        assert "step 5" in ctx.conversation_history
        assert "step 14" in ctx.conversation_history

    def test_record_attempt(self):
        from warden.core.error_patterns import ErrorCategory
        from warden.core.recovery import RecoveryState, RecoveryStrategy, record_attempt

        state = RecoveryState(thread_id="t1")
        record_attempt(state, RecoveryStrategy.PLANNING_PERSPECTIVE, _failing_transcript())
        assert state.last_strategy_used == RecoveryStrategy.PLANNING_PERSPECTIVE
        assert state.error_patterns[ErrorCategory.PERMISSION].count == 3


# ---------------------------------------------------------------------------
# 5. Nodes
# ---------------------------------------------------------------------------

@pytest.fixture
def fresh_store(monkeypatch):
    from warden.core.recovery import RecoveryStateStore

    store = RecoveryStateStore(clock=FakeClock())
    monkeypatch.setattr("warden.core.nodes.recovery.get_recovery_store", lambda: store)
    return store


class TestSmartErrorRecoveryNode:
    def _state(self, thread_id: str = "thread-1"):
        from warden.core.state import RecoveryGraphState

        return RecoveryGraphState(thread_id=thread_id, messages=_failing_transcript(), current_task="Add a loader")

    def test_successful_attempt(self, monkeypatch, fresh_store):
        from warden.core.nodes import smart_error_recovery_node
        from warden.core.recovery import RecoveryStrategy

        llm = _fake_llm(_diagnosis_response())
        roles = []
        monkeypatch.setattr("warden.core.nodes._helpers.get_llm", lambda role: roles.append(role) or llm)

        result = smart_error_recovery_node(self._state())

        response, tool_msg = result["messages"]
        assert response.tool_calls[0]["name"] == "diagnose_error"
        assert isinstance(tool_msg, ToolMessage)
        assert tool_msg.tool_call_id == "call_diag"
        assert tool_msg.additional_kwargs["is_diagnosis"] is True
        assert tool_msg.additional_kwargs["is_smart_recovery"] is True
        assert tool_msg.additional_kwargs["retry_count"] == 1
        assert tool_msg.additional_kwargs["strategy"] == "fresh_perspective"
        assert "Retry attempt 1/5" in tool_msg.content
        assert roles == ["programmer"]

        state = fresh_store.get("thread-1")
        assert state.last_strategy_used == RecoveryStrategy.FRESH_PERSPECTIVE
        llm.bind_tools.assert_called_once()
        assert llm.bind_tools.call_args.kwargs["tool_choice"] == "diagnose_error"

    def test_roles_rotate_per_attempt(self, monkeypatch, fresh_store):
        from warden.core.nodes import smart_error_recovery_node

        llm = _fake_llm(_diagnosis_response())
        roles = []
        monkeypatch.setattr("warden.core.nodes._helpers.get_llm", lambda role: roles.append(role) or llm)

        for _ in range(4):
            smart_error_recovery_node(self._state())
        assert roles == ["programmer", "planner", "summarizer", "programmer"]

    def test_circuit_breaker_on_sixth_call(self, monkeypatch, fresh_store):
        from warden.core.nodes import REQUEST_HUMAN_HELP, smart_error_recovery_node

        llm = _fake_llm(_diagnosis_response())
        monkeypatch.setattr("warden.core.nodes._helpers.get_llm", lambda role: llm)

        for _ in range(5):
            smart_error_recovery_node(self._state())
        assert llm.invoke.call_count == 5

        result = smart_error_recovery_node(self._state())
        (message,) = result["messages"]
        assert isinstance(message, AIMessage)
        assert message.tool_calls[0]["name"] == REQUEST_HUMAN_HELP
        assert "6 recovery attempts" in message.tool_calls[0]["args"]["help_request"]
        assert llm.invoke.call_count == 5

    def test_threads_are_independent(self, monkeypatch, fresh_store):
        from warden.core.nodes import smart_error_recovery_node

        llm = _fake_llm(_diagnosis_response())
        monkeypatch.setattr("warden.core.nodes._helpers.get_llm", lambda role: llm)

        smart_error_recovery_node(self._state("a"))
        smart_error_recovery_node(self._state("a"))
        smart_error_recovery_node(self._state("b"))
        assert fresh_store.get("a").retry_count == 2
        assert fresh_store.get("b").retry_count == 1

    def test_config_thread_id_wins(self, monkeypatch, fresh_store):
        from warden.core.nodes import smart_error_recovery_node

        llm = _fake_llm(_diagnosis_response())
        monkeypatch.setattr("warden.core.nodes._helpers.get_llm", lambda role: llm)

        smart_error_recovery_node(self._state("from-state"), {"configurable": {"thread_id": "from-config"}})
        assert "from-config" in fresh_store
        assert "from-state" not in fresh_store

    def test_missing_diagnosis_raises(self, monkeypatch, fresh_store):
        from warden.core.concurrency import thread_locks
        from warden.core.nodes import smart_error_recovery_node
        from warden.core.recovery import DiagnosisMissingException

        llm = _fake_llm(AIMessage(content="I think it's fine"))
        monkeypatch.setattr("warden.core.nodes._helpers.get_llm", lambda role: llm)

        with pytest.raises(DiagnosisMissingException) as exc:
            smart_error_recovery_node(self._state())
        assert exc.value.retry_count == 1
        assert fresh_store.get("thread-1").retry_count == 1
        assert "thread-1" not in thread_locks

    def test_many_threads_leave_no_locks_behind(self, monkeypatch):
        from warden.core.concurrency import thread_locks
        from warden.core.nodes import smart_error_recovery_node
        from warden.core.recovery import RecoveryStateStore

        store = RecoveryStateStore(max_entries=2, clock=FakeClock())
        monkeypatch.setattr("warden.core.nodes.recovery.get_recovery_store", lambda: store)
        llm = _fake_llm(_diagnosis_response())
        monkeypatch.setattr("warden.core.nodes._helpers.get_llm", lambda role: llm)

        before = len(thread_locks)
        for i in range(20):
            smart_error_recovery_node(self._state(f"thread-{i}"))

        assert len(store) == 2
        assert len(thread_locks) == before
        assert not any(f"thread-{i}" in thread_locks for i in range(20))


class TestDiagnoseErrorNode:
    def test_returns_flagged_diagnosis(self, monkeypatch):
        from warden.core.nodes import diagnose_error_node
        from warden.core.state import RecoveryGraphState
        from warden.core.transcript import is_diagnosis_message

        llm = _fake_llm(_diagnosis_response("Use a writable path"))
        monkeypatch.setattr("warden.core.nodes._helpers.get_llm", lambda role: llm)

        result = diagnose_error_node(RecoveryGraphState(messages=_failing_transcript()))
        response, tool_msg = result["messages"]
        assert is_diagnosis_message(tool_msg)
        assert tool_msg.content == "Error diagnosis: Use a writable path"
        assert "is_smart_recovery" not in tool_msg.additional_kwargs

        prompt = llm.invoke.call_args.args[0][0].content
        assert "Permission denied" in prompt

    def test_missing_diagnosis_raises(self, monkeypatch):
        from warden.core.nodes import diagnose_error_node
        from warden.core.recovery import DiagnosisMissingException
        from warden.core.state import RecoveryGraphState

        llm = _fake_llm(AIMessage(content="no tool call"))
        monkeypatch.setattr("warden.core.nodes._helpers.get_llm", lambda role: llm)

        with pytest.raises(DiagnosisMissingException):
            diagnose_error_node(RecoveryGraphState(messages=_failing_transcript()))

    def test_failure_tail_skips_resolved_history(self):
        from warden.core.nodes import _failure_tail

        old_fail, recent_fail = _err("old"), _err("recent")
        transcript = [_ai(), old_fail, _ai(), _ok(), _ai(), recent_fail]
        tail = _failure_tail(transcript)
        assert old_fail not in tail
        assert recent_fail in tail
