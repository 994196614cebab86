"""LangGraph shared state definitions for the recovery and audit graphs."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated

from langchain_core.messages import AIMessage, BaseMessage
from langgraph.graph.message import add_messages
from pydantic import BaseModel, Field

from warden.core.escalation import EscalationDecision
from warden.core.report import SecurityAuditReport


class AuditStage(StrEnum):
    """The audit step that runs next; DONE once the report is set."""

    INITIALIZE = "initialize"
    SCAN = "scan"
    RECOMMEND = "recommend"
    FINALIZE = "finalize"
    DONE = "done"


def stage_after_scan(message: BaseMessage | None) -> AuditStage:
    """Scan output that calls a tool asks for recommendations; anything else finalizes."""
    if isinstance(message, AIMessage) and message.tool_calls:
        return AuditStage.RECOMMEND
    return AuditStage.FINALIZE


class AuditState(BaseModel):
    """State owned by one audit run."""

    # ── Repository context ────────────────────────────────────────────
    thread_id: str = "default"
    repo_root: str = ""
    branch_name: str = ""
    base_branch_name: str = ""      # caller-provided wins over git lookup
    codebase_tree: str = ""

    # ── Diff bookkeeping ──────────────────────────────────────────────
    # Newline-separated paths. Empty string when nothing changed or the
    # lookup failed, never None.
    changed_files: str = ""
    scanned_files: str = ""

    # ── Progress ──────────────────────────────────────────────────────
    stage: AuditStage = AuditStage.INITIALIZE
    audit_messages: Annotated[list[BaseMessage], add_messages] = Field(default_factory=list)

    # Set once by finalize
    security_report: SecurityAuditReport | None = None

    @property
    def changed_file_list(self) -> list[str]:
        return [f.strip() for f in self.changed_files.splitlines() if f.strip()]


class RecoveryGraphState(BaseModel):
    """State for one escalation/recovery step of a coding conversation."""

    thread_id: str = "default"
    messages: Annotated[list[BaseMessage], add_messages] = Field(default_factory=list)
    current_task: str = ""
    completed_tasks: str = ""
    codebase_tree: str = ""
    escalation: EscalationDecision = EscalationDecision.NORMAL
