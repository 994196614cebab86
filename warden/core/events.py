"""Event bus for recovery and audit activity — decouples nodes from any UI layer.

Nodes call ``emit(...)`` to publish structured events. Front ends subscribe
via ``subscribe_sync`` / ``subscribe_async`` to receive them.

Event categories:
  node_start    — a graph node begins execution
  node_end      — a graph node finishes
  status        — progress message
  error         — something went wrong (degraded, not fatal)
  escalation    — the escalation engine reached a decision
  recovery      — a smart-recovery attempt started or completed
  human_help    — the circuit breaker tripped; a human must step in
  audit_report  — an audit run produced its final report
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

from warden.core.logging import get_logger

logger = get_logger("core.events")

# ── Event loop reference for cross-thread delivery ───────────────────────
_loop: asyncio.AbstractEventLoop | None = None


def set_event_loop(loop: asyncio.AbstractEventLoop) -> None:
    """Register the main asyncio event loop for cross-thread event delivery."""
    global _loop
    _loop = loop


class EventCategory(str, Enum):
    NODE_START = "node_start"
    NODE_END = "node_end"
    STATUS = "status"
    ERROR = "error"
    ESCALATION = "escalation"
    RECOVERY = "recovery"
    HUMAN_HELP = "human_help"
    AUDIT_REPORT = "audit_report"


@dataclass
class WorkflowEvent:
    """A single event emitted during a recovery step or audit run."""
    category: EventCategory
    agent: str                      # e.g. "auditor", "recovery", "system"
    title: str                      # short human-readable headline
    detail: str = ""
    metadata: dict = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "agent": self.agent,
            "title": self.title,
            "detail": self.detail,
            "metadata": self.metadata,
            "ts": self.timestamp,
        }


# ── Singleton event bus ──────────────────────────────────────────────────

_listeners: list[Callable[[WorkflowEvent], Any]] = []
_async_listeners: list[Callable[[WorkflowEvent], Awaitable[Any]]] = []
_history: deque[WorkflowEvent] = deque(maxlen=1000)


def emit(event: WorkflowEvent) -> None:
    """Emit an event synchronously. Safe to call from any thread."""
    _history.append(event)
    logger.debug("EVENT | %s | %s | %s", event.category.value, event.agent, event.title)

    for listener in _listeners:
        try:
            listener(event)
        except Exception as e:
            logger.warning("Sync listener error: %s", e)

    # Schedule async listeners into the main event loop (thread-safe)
    if _loop is not None and not _loop.is_closed():
        for listener in _async_listeners:
            try:
                _loop.call_soon_threadsafe(asyncio.ensure_future, listener(event))
            except RuntimeError:
                logger.debug("Event loop closed — dropping async delivery of %s", event.title)
    else:
        for listener in _async_listeners:
            try:
                loop = asyncio.get_running_loop()
                loop.create_task(listener(event))
            except RuntimeError:
                logger.debug("No running loop — dropping async delivery of %s", event.title)


def subscribe_sync(listener: Callable[[WorkflowEvent], Any]) -> None:
    """Register a synchronous event listener."""
    _listeners.append(listener)


def subscribe_async(listener: Callable[[WorkflowEvent], Awaitable[Any]]) -> None:
    """Register an async event listener (e.g. WebSocket broadcast)."""
    _async_listeners.append(listener)


def get_history(limit: int = 200) -> list[dict]:
    """Return recent events as dicts."""
    items = list(_history)
    return [e.to_dict() for e in items[-limit:]]


def clear_listeners() -> None:
    """Remove all listeners (useful for testing)."""
    _listeners.clear()
    _async_listeners.clear()


def clear_history() -> None:
    _history.clear()


# ── Convenience emitters (called from nodes) ─────────────────────────────

def emit_node_start(agent: str, node_name: str, detail: str = "") -> None:
    emit(WorkflowEvent(
        category=EventCategory.NODE_START,
        agent=agent,
        title=f"▶ {node_name} started",
        detail=detail,
        metadata={"node": node_name},
    ))


def emit_node_end(agent: str, node_name: str, summary: str = "") -> None:
    emit(WorkflowEvent(
        category=EventCategory.NODE_END,
        agent=agent,
        title=f"✓ {node_name} finished",
        detail=summary,
        metadata={"node": node_name},
    ))


def emit_status(agent: str, message: str, **extra) -> None:
    emit(WorkflowEvent(
        category=EventCategory.STATUS,
        agent=agent,
        title=message,
        metadata=dict(extra),
    ))


def emit_error(agent: str, error: str) -> None:
    emit(WorkflowEvent(
        category=EventCategory.ERROR,
        agent=agent,
        title=f"❌ Error in {agent}",
        detail=error,
    ))


def emit_escalation(decision: str, thread_id: str = "", groups: int = 0) -> None:
    icon = {"normal": "✅", "needs_diagnosis": "🩺", "needs_smart_recovery": "🧯"}.get(decision, "❓")
    emit(WorkflowEvent(
        category=EventCategory.ESCALATION,
        agent="escalation",
        title=f"{icon} Escalation: {decision}",
        metadata={"decision": decision, "thread_id": thread_id, "tool_groups": groups},
    ))


def emit_recovery(thread_id: str, retry_count: int, strategy: str, detail: str = "") -> None:
    emit(WorkflowEvent(
        category=EventCategory.RECOVERY,
        agent="recovery",
        title=f"🔁 Recovery attempt {retry_count} ({strategy})",
        detail=detail[:1500] if detail else "",
        metadata={"thread_id": thread_id, "retry_count": retry_count, "strategy": strategy},
    ))


def emit_human_help(thread_id: str, retry_count: int, request: str) -> None:
    emit(WorkflowEvent(
        category=EventCategory.HUMAN_HELP,
        agent="recovery",
        title="🆘 Circuit breaker tripped — human help requested",
        detail=request,
        metadata={"thread_id": thread_id, "retry_count": retry_count},
    ))


def emit_audit_report(overall_risk: str, vulnerabilities: int, recommendations: int, summary: str = "") -> None:
    emit(WorkflowEvent(
        category=EventCategory.AUDIT_REPORT,
        agent="auditor",
        title=f"🔒 Audit complete — risk {overall_risk.upper()}",
        detail=summary,
        metadata={
            "overall_risk": overall_risk,
            "vulnerabilities": vulnerabilities,
            "recommendations": recommendations,
        },
    ))
