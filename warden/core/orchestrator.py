"""LangGraph orchestration for the recovery step and the audit pipeline.

Each graph is a set of nodes plus explicit transition tables: route functions
are pure and return enum values, and the ``*_TRANSITIONS`` dicts map those
values to the next node.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from enum import StrEnum

from langchain_core.messages import BaseMessage
from langgraph.graph import END, StateGraph

from warden.core.concurrency import thread_locks
from warden.core.escalation import EscalationDecision
from warden.core.logging import get_logger
from warden.core.nodes import (
    diagnose_error_node,
    escalation_node,
    finalize_report_node,
    generate_recommendations_node,
    initialize_audit_node,
    scan_code_changes_node,
    smart_error_recovery_node,
)
from warden.core.state import AuditStage, AuditState, RecoveryGraphState, stage_after_scan

logger = get_logger("core.orchestrator")


# ---------------------------------------------------------------------------
# Recovery graph
# ---------------------------------------------------------------------------

RECOVERY_TRANSITIONS: dict[str, str] = {
    EscalationDecision.NORMAL: END,
    EscalationDecision.NEEDS_DIAGNOSIS: "diagnose",
    EscalationDecision.NEEDS_SMART_RECOVERY: "smart_recovery",
}


def route_after_escalation(state: RecoveryGraphState) -> EscalationDecision:
    return state.escalation


def build_recovery_graph() -> StateGraph:
    graph = StateGraph(RecoveryGraphState)

    graph.add_node("escalation", escalation_node)
    graph.add_node("diagnose", diagnose_error_node)
    graph.add_node("smart_recovery", smart_error_recovery_node)

    graph.set_entry_point("escalation")
    graph.add_conditional_edges("escalation", route_after_escalation, RECOVERY_TRANSITIONS)
    graph.add_edge("diagnose", END)
    graph.add_edge("smart_recovery", END)
    return graph


def compile_recovery_graph():
    return build_recovery_graph().compile()


def run_recovery_step(
    messages: Sequence[BaseMessage],
    thread_id: str = "default",
    current_task: str = "",
    completed_tasks: str = "",
    codebase_tree: str = "",
) -> RecoveryGraphState:
    """Evaluate one transcript and run whichever recovery path it calls for."""
    initial = {
        "thread_id": thread_id,
        "messages": list(messages),
        "current_task": current_task,
        "completed_tasks": completed_tasks,
        "codebase_tree": codebase_tree,
    }
    final = compile_recovery_graph().invoke(
        initial,
        config={"configurable": {"thread_id": thread_id}},
    )
    return RecoveryGraphState(**final)


# ---------------------------------------------------------------------------
# Audit graph
# ---------------------------------------------------------------------------

class AuditRoute(StrEnum):
    RECOMMEND = "recommend"
    FINALIZE = "finalize"


AUDIT_TRANSITIONS: dict[str, str] = {
    AuditRoute.RECOMMEND: "recommend",
    AuditRoute.FINALIZE: "finalize",
}


def route_after_scan(state: AuditState) -> AuditRoute:
    """Recommend only when the scan's last message asks for follow-up actions."""
    last = state.audit_messages[-1] if state.audit_messages else None
    if stage_after_scan(last) == AuditStage.RECOMMEND:
        return AuditRoute.RECOMMEND
    return AuditRoute.FINALIZE


def build_audit_graph() -> StateGraph:
    """initialize → scan → [recommend] → finalize."""
    graph = StateGraph(AuditState)

    graph.add_node("initialize", initialize_audit_node)
    graph.add_node("scan", scan_code_changes_node)
    graph.add_node("recommend", generate_recommendations_node)
    graph.add_node("finalize", finalize_report_node)

    graph.set_entry_point("initialize")
    graph.add_edge("initialize", "scan")
    graph.add_conditional_edges("scan", route_after_scan, AUDIT_TRANSITIONS)
    graph.add_edge("recommend", "finalize")
    graph.add_edge("finalize", END)
    return graph


def compile_audit_graph():
    return build_audit_graph().compile()


def run_audit(
    repo_root: str = "",
    thread_id: str | None = None,
    base_branch: str = "",
    branch_name: str = "",
) -> AuditState:
    """Run one audit over the repository's changes against its base branch."""
    thread_id = thread_id or f"audit-{uuid.uuid4().hex[:8]}"
    initial = {
        "thread_id": thread_id,
        "repo_root": repo_root,
        "base_branch_name": base_branch,
        "branch_name": branch_name,
    }
    logger.info("Starting audit | thread: %s | repo: %s", thread_id, repo_root or "(settings)")

    with thread_locks.exclusive(thread_id):
        final_dict = compile_audit_graph().invoke(
            initial,
            config={"configurable": {"thread_id": thread_id}},
        )
    final = AuditState(**final_dict)

    report = final.security_report
    logger.info(
        "Audit complete | thread: %s | risk: %s | recommendations: %d",
        thread_id,
        report.overall_risk if report else "n/a",
        len(report.recommendations) if report else 0,
    )
    return final
