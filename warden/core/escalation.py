"""Escalation decisions — when a struggling agent needs diagnosis or smart recovery.

Re-evaluated after every batch of tool results. Nothing is persisted between
evaluations; per-thread retry bookkeeping lives in ``warden.core.recovery``.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum

from langchain_core.messages import BaseMessage

from warden.core.error_patterns import detect_stuck_pattern
from warden.core.transcript import (
    calculate_error_rate,
    count_recent_diagnoses,
    group_tool_messages,
    has_recent_diagnosis,
)

# Standard diagnosis
DIAGNOSIS_COOLDOWN_GROUPS = 2
IMMEDIATE_GROUPS = 2
IMMEDIATE_THRESHOLD = 0.5
PATTERN_GROUPS = 3
PATTERN_THRESHOLD = 0.6

# Smart recovery
SMART_DIAGNOSIS_WINDOW = 20
SMART_DIAGNOSIS_COUNT = 2
SMART_GROUPS = 3
SMART_THRESHOLD = 0.8


class EscalationDecision(StrEnum):
    NORMAL = "normal"
    NEEDS_DIAGNOSIS = "needs_diagnosis"
    NEEDS_SMART_RECOVERY = "needs_smart_recovery"


def _all_at_least(groups: list, threshold: float) -> bool:
    return all(calculate_error_rate(g) >= threshold for g in groups)


def should_diagnose_error(messages: Sequence[BaseMessage]) -> bool:
    """Decide whether a standard error diagnosis is warranted.

    - never with fewer than 2 tool groups
    - never while a diagnosis sits in the last 2 groups (cooldown)
    - stuck on the same failing tool → yes
    - last 2 groups each ≥ 50% errors → yes
    - last 3 groups each ≥ 60% errors → yes
    """
    groups = group_tool_messages(messages)
    if len(groups) < 2:
        return False

    if has_recent_diagnosis(messages, DIAGNOSIS_COOLDOWN_GROUPS):
        return False

    if detect_stuck_pattern(messages):
        return True

    if _all_at_least(groups[-IMMEDIATE_GROUPS:], IMMEDIATE_THRESHOLD):
        return True

    if len(groups) >= PATTERN_GROUPS:
        return _all_at_least(groups[-PATTERN_GROUPS:], PATTERN_THRESHOLD)

    return False


def should_use_smart_recovery(messages: Sequence[BaseMessage]) -> bool:
    """Decide whether the stronger, strategy-rotating recovery should run.

    - never with fewer than 2 tool groups
    - 2+ diagnosis results in the last 20 messages (diagnosis already failed) → yes
    - last 3 groups each ≥ 80% errors → yes
    - stuck on the same failing tool → yes
    """
    groups = group_tool_messages(messages)
    if len(groups) < 2:
        return False

    if count_recent_diagnoses(messages, SMART_DIAGNOSIS_WINDOW) >= SMART_DIAGNOSIS_COUNT:
        return True

    if len(groups) >= SMART_GROUPS and _all_at_least(groups[-SMART_GROUPS:], SMART_THRESHOLD):
        return True

    return detect_stuck_pattern(messages)


def decide_escalation(messages: Sequence[BaseMessage]) -> EscalationDecision:
    """Combine both checks; smart recovery wins when both fire."""
    if not should_diagnose_error(messages):
        return EscalationDecision.NORMAL
    if should_use_smart_recovery(messages):
        return EscalationDecision.NEEDS_SMART_RECOVERY
    return EscalationDecision.NEEDS_DIAGNOSIS
