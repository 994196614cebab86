"""Smart error recovery: per-thread retry bookkeeping and the circuit breaker.

Each enhanced-recovery invocation for a conversation thread:

1. bumps ``retry_count`` on that thread's ``RecoveryState``;
2. trips the circuit breaker once ``retry_count`` exceeds the attempt budget
   (the count is left as-is, so later calls keep tripping it);
3. otherwise rotates to the next ``RecoveryStrategy`` and builds the context
   handed to the model.

The model call itself lives in ``warden.core.nodes.recovery``.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence
from enum import StrEnum

from langchain_core.messages import BaseMessage
from pydantic import BaseModel, Field

from warden.core.error_patterns import (
    ErrorCategory,
    ErrorPattern,
    analyze_error_patterns,
    collect_error_patterns,
)
from warden.core.logging import get_logger
from warden.core.transcript import format_message

logger = get_logger("core.recovery")

CONVERSATION_HISTORY_MESSAGES = 10


class DiagnosisMissingException(Exception):
    """Raised when the model returns no structured diagnosis during recovery."""
    def __init__(self, thread_id: str, retry_count: int) -> None:
        self.thread_id = thread_id
        self.retry_count = retry_count
        super().__init__(
            f"Failed to generate a diagnose_error tool call "
            f"(thread={thread_id}, attempt={retry_count})"
        )


class RecoveryStrategy(StrEnum):
    FRESH_PERSPECTIVE = "fresh_perspective"
    PLANNING_PERSPECTIVE = "planning_perspective"
    SUMMARY_PERSPECTIVE = "summary_perspective"


STRATEGY_ROTATION: tuple[RecoveryStrategy, ...] = (
    RecoveryStrategy.FRESH_PERSPECTIVE,
    RecoveryStrategy.PLANNING_PERSPECTIVE,
    RecoveryStrategy.SUMMARY_PERSPECTIVE,
)

# Model role used for each strategy (see warden.agents.models.get_llm)
STRATEGY_ROLES: dict[RecoveryStrategy, str] = {
    RecoveryStrategy.FRESH_PERSPECTIVE: "programmer",
    RecoveryStrategy.PLANNING_PERSPECTIVE: "planner",
    RecoveryStrategy.SUMMARY_PERSPECTIVE: "summarizer",
}

ALTERNATIVE_APPROACHES: tuple[str, ...] = (
    "Use 'ls -la' to verify file existence and permissions before attempting operations",
    "Try 'file <filename>' to check file type and encoding issues",
    "Use 'head -n 5 <file>' or 'tail -n 5 <file>' for safe file content preview",
    "Consider using 'find' command with different search patterns",
    "Try alternative tools: 'grep', 'awk', 'sed' instead of complex commands",
    "Use 'pwd' and 'ls' to verify current location and available files",
    "Consider using relative paths instead of absolute paths or vice versa",
    "Try 'which <command>' to verify command availability",
    "Use 'cat /etc/os-release' to check system environment",
    "Consider breaking complex operations into multiple simple steps",
)


def select_strategy(
    retry_count: int,
    rotation: Sequence[RecoveryStrategy] = STRATEGY_ROTATION,
) -> RecoveryStrategy:
    """Strategy for attempt ``retry_count`` (1-based), wrapping around the rotation."""
    if not rotation:
        raise ValueError("Strategy rotation must not be empty")
    return rotation[(retry_count - 1) % len(rotation)]


def format_alternative_approaches(limit: int = 5) -> str:
    items = "\n".join(f"- {a}" for a in ALTERNATIVE_APPROACHES[:limit])
    return f"## Suggested Alternative Approaches:\n{items}"


# ---------------------------------------------------------------------------
# Per-thread state
# ---------------------------------------------------------------------------

class RecoveryState(BaseModel):
    """Recovery bookkeeping for one conversation thread."""
    thread_id: str
    retry_count: int = 0
    error_patterns: dict[ErrorCategory, ErrorPattern] = Field(default_factory=dict)
    last_strategy_used: RecoveryStrategy | None = None
    updated_at: float = 0.0


class HumanHelpRequest(BaseModel):
    """Circuit-breaker outcome: automated recovery stops, a human is asked."""
    thread_id: str
    retry_count: int

    @property
    def message(self) -> str:
        return (
            f"I've attempted error recovery {self.retry_count} times but am still "
            "encountering issues. The system has hit a circuit breaker limit. I need "
            "human assistance to proceed. Please review the error patterns and provide guidance."
        )

    @property
    def help_request(self) -> str:
        return (
            f"Repeated failures after {self.retry_count} recovery attempts. "
            "Need human intervention to resolve error patterns."
        )


def start_attempt(state: RecoveryState, max_attempts: int) -> RecoveryStrategy | HumanHelpRequest:
    """Count one recovery attempt and decide what it does.

    Returns the strategy to use, or a HumanHelpRequest once ``retry_count``
    exceeds ``max_attempts``.
    """
    state.retry_count += 1
    if state.retry_count > max_attempts:
        logger.warning(
            "Maximum recovery attempts reached (thread=%s, attempt=%d) — requesting human help",
            state.thread_id,
            state.retry_count,
        )
        return HumanHelpRequest(thread_id=state.thread_id, retry_count=state.retry_count)
    return select_strategy(state.retry_count)


class RecoveryStateStore:
    """Process-wide map of thread id → RecoveryState with explicit eviction.

    Entries idle for longer than ``ttl_seconds`` are dropped, and at most
    ``max_entries`` threads are tracked (least recently used evicted first).
    Either bound is disabled by passing 0.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._states: OrderedDict[str, RecoveryState] = OrderedDict()
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock

    def _evict(self, now: float) -> None:
        if self.ttl_seconds > 0:
            expired = [
                tid for tid, st in self._states.items()
                if now - st.updated_at > self.ttl_seconds
            ]
            for tid in expired:
                del self._states[tid]
                logger.debug("Evicted idle recovery state for thread %s", tid)
        if self.max_entries > 0:
            while len(self._states) > self.max_entries:
                tid, _ = self._states.popitem(last=False)
                logger.debug("Evicted least recently used recovery state for thread %s", tid)

    def get_or_create(self, thread_id: str) -> RecoveryState:
        """Return the thread's state, creating it lazily. Refreshes its TTL."""
        with self._lock:
            now = self._clock()
            self._evict(now)
            state = self._states.get(thread_id)
            if state is None:
                state = RecoveryState(thread_id=thread_id)
                self._states[thread_id] = state
                logger.info("Created recovery state for thread %s", thread_id)
            state.updated_at = now
            self._states.move_to_end(thread_id)
            self._evict(now)
            return state

    def get(self, thread_id: str) -> RecoveryState | None:
        with self._lock:
            self._evict(self._clock())
            return self._states.get(thread_id)

    def reset(self, thread_id: str) -> None:
        with self._lock:
            self._states.pop(thread_id, None)

    def clear(self) -> None:
        with self._lock:
            self._states.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, thread_id: str) -> bool:
        with self._lock:
            return thread_id in self._states


_store: RecoveryStateStore | None = None


def get_recovery_store() -> RecoveryStateStore:
    """Singleton accessor, sized from settings on first use."""
    global _store
    if _store is None:
        from warden.core.config import get_settings

        settings = get_settings()
        _store = RecoveryStateStore(
            ttl_seconds=settings.recovery_state_ttl_seconds,
            max_entries=settings.recovery_state_max_threads,
        )
    return _store


# ---------------------------------------------------------------------------
# Prompt context
# ---------------------------------------------------------------------------

class RecoveryContext(BaseModel):
    """Everything the recovery model call needs, pre-rendered as text."""
    error_analysis: str
    alternative_approaches: str
    current_task: str
    completed_tasks: str
    codebase_tree: str
    conversation_history: str


def build_recovery_context(
    messages: Sequence[BaseMessage],
    current_task: str = "",
    completed_tasks: str = "",
    codebase_tree: str = "",
) -> RecoveryContext:
    history = list(messages)[-CONVERSATION_HISTORY_MESSAGES:]
    return RecoveryContext(
        error_analysis=analyze_error_patterns(messages),
        alternative_approaches=format_alternative_approaches(),
        current_task=current_task or "No current task recorded.",
        completed_tasks=completed_tasks or "No tasks completed yet.",
        codebase_tree=codebase_tree or "No codebase tree generated yet.",
        conversation_history="\n".join(format_message(m) for m in history),
    )


def record_attempt(
    state: RecoveryState,
    strategy: RecoveryStrategy,
    messages: Sequence[BaseMessage],
) -> None:
    """Store the strategy used and the error tallies it was based on."""
    state.error_patterns = collect_error_patterns(messages)
    state.last_strategy_used = strategy
