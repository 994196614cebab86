"""Audit nodes — initialize, scan, recommend, finalize.

Scan and recommend never abort the run: a failed collaborator call becomes a
clearly marked degraded message and the pipeline moves on. Finalize never
fails either; synthesis errors fall back to a fixed report.
"""
from __future__ import annotations

from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from warden.agents.models import render_prompt
from warden.core.config import get_settings
from warden.core.events import (
    emit_audit_report,
    emit_error,
    emit_node_end,
    emit_node_start,
    emit_status,
)
from warden.core.logging import get_logger
from warden.core.report import (
    collect_analysis_text,
    fallback_report,
    format_report_message,
    synthesize_report,
)
from warden.core.state import AuditStage, AuditState, stage_after_scan
from warden.tools.git import get_base_branch_name, get_changed_files, get_code_changes

from ._helpers import _invoke_model, _new_id, request_security_recommendations

logger = get_logger("core.nodes.audit")

NO_CHANGES_MESSAGE = "ℹ️ No code changes detected to scan for security vulnerabilities."
SCAN_FAILED_MESSAGE = (
    "❌ Failed to complete security scan due to an error. "
    "Please review the code changes manually for potential security vulnerabilities."
)
RECOMMEND_FAILED_MESSAGE = (
    "❌ Failed to generate security recommendations due to an error. "
    "Please manually review the security analysis and create appropriate recommendations."
)
FINALIZE_FAILED_MESSAGE = (
    "⚠️ Security audit completed with errors. Please review the analysis above "
    "and create appropriate security measures manually."
)


def _marker_messages(tool_name: str, content: str, result: str, args: dict) -> list:
    """Visible AI message plus the hidden tool result that closes its call."""
    call_id = _new_id()
    return [
        AIMessage(
            id=_new_id(),
            content=content,
            additional_kwargs={"hidden": False},
            tool_calls=[{"id": call_id, "name": tool_name, "args": args}],
        ),
        ToolMessage(
            id=_new_id(),
            tool_call_id=call_id,
            name=tool_name,
            content=result,
            additional_kwargs={"hidden": True},
        ),
    ]


def _response_text(response: AIMessage) -> str:
    content = response.content
    if isinstance(content, str):
        return content
    return "".join(
        b.get("text", "") if isinstance(b, dict) else str(b) for b in content or []
    )


# ---------------------------------------------------------------------------
# NODE: initialize
# ---------------------------------------------------------------------------

def initialize_audit_node(state: AuditState) -> dict:
    """Resolve the base branch and the changed-file list."""
    logger.info("Initializing security audit (repo=%s)", state.repo_root or "(settings)")
    emit_node_start("auditor", "Initialize Audit", detail=state.repo_root)

    base_branch = state.base_branch_name or get_base_branch_name(state.repo_root)
    changed_files = get_changed_files(base_branch, state.repo_root) if base_branch else ""

    count = len([f for f in changed_files.splitlines() if f.strip()])
    emit_status("auditor", f"🔒 Auditing {count} changed file(s) against {base_branch}", stage="initialize")
    emit_node_end("auditor", "Initialize Audit", f"base={base_branch}, files={count}")

    return {
        "base_branch_name": base_branch,
        "changed_files": changed_files,
        "scanned_files": "",
        "stage": AuditStage.SCAN,
        "audit_messages": _marker_messages(
            "security_audit_started",
            "🔒 Starting security audit of code changes...",
            "Security audit initialized",
            {"audit_started": True},
        ),
    }


# ---------------------------------------------------------------------------
# NODE: scan
# ---------------------------------------------------------------------------

def scan_code_changes_node(state: AuditState) -> dict:
    """Ask the model to review the diff for the changed files."""
    emit_node_start("auditor", "Scan Code Changes")

    if not state.changed_files.strip():
        logger.info("No changed files to scan")
        emit_node_end("auditor", "Scan Code Changes", "No changes")
        return {
            "scanned_files": "No files changed",
            "stage": AuditStage.FINALIZE,
            "audit_messages": [AIMessage(id=_new_id(), content=NO_CHANGES_MESSAGE)],
        }

    try:
        code_changes = get_code_changes(state.base_branch_name, state.repo_root)
        prompt = render_prompt(
            "security_scan",
            changed_files=state.changed_files,
            code_changes=code_changes,
        )
        response = _invoke_model(
            "programmer",
            [HumanMessage(content=prompt)],
            tools=[request_security_recommendations],
        )
    except Exception as exc:
        logger.error("Failed to scan code changes for security issues: %s", exc, exc_info=True)
        emit_error("auditor", f"Security scan failed: {exc}")
        return {
            "scanned_files": state.changed_files,
            "stage": AuditStage.FINALIZE,
            "audit_messages": [AIMessage(id=_new_id(), content=SCAN_FAILED_MESSAGE)],
        }

    message = AIMessage(
        id=_new_id(),
        content=_response_text(response),
        tool_calls=list(response.tool_calls or []),
    )
    logger.info("Completed security scan (%d tool call(s))", len(message.tool_calls))
    emit_node_end("auditor", "Scan Code Changes", message.content[:400])
    return {
        "scanned_files": state.changed_files,
        "stage": stage_after_scan(message),
        "audit_messages": [message],
    }


# ---------------------------------------------------------------------------
# NODE: recommend
# ---------------------------------------------------------------------------

def _task_context(state: AuditState) -> str:
    return "\n".join([
        "Task: Code changes",
        f"Changed Files: {state.changed_files or 'No files changed'}",
        f"Repository: {state.repo_root or 'Unknown'}",
        f"Branch: {state.branch_name or 'Unknown'}",
    ])


def generate_recommendations_node(state: AuditState) -> dict:
    """Turn the accumulated analysis into prioritized, actionable recommendations."""
    emit_node_start("auditor", "Generate Recommendations")
    try:
        analysis = collect_analysis_text(state.audit_messages) or "No security analysis available"
        prompt = render_prompt(
            "security_recommendations",
            security_analysis=analysis,
            task_context=_task_context(state),
        )
        response = _invoke_model("programmer", [HumanMessage(content=prompt)])
    except Exception as exc:
        logger.error("Failed to generate security recommendations: %s", exc, exc_info=True)
        emit_error("auditor", f"Recommendations failed: {exc}")
        return {
            "stage": AuditStage.FINALIZE,
            "audit_messages": [AIMessage(id=_new_id(), content=RECOMMEND_FAILED_MESSAGE)],
        }

    logger.info("Completed generating security recommendations")
    emit_node_end("auditor", "Generate Recommendations", _response_text(response)[:400])
    return {
        "stage": AuditStage.FINALIZE,
        "audit_messages": [AIMessage(id=_new_id(), content=_response_text(response))],
    }


# ---------------------------------------------------------------------------
# NODE: finalize
# ---------------------------------------------------------------------------

def finalize_report_node(state: AuditState) -> dict:
    """Synthesize the structured report and append the completion summary."""
    logger.info("Finalizing security audit report")
    emit_node_start("auditor", "Finalize Report")
    settings = get_settings()

    try:
        report = synthesize_report(
            collect_analysis_text(state.audit_messages),
            summary_max_chars=settings.report_summary_max_chars,
            max_recommendations=settings.report_max_recommendations,
        )
        messages = _marker_messages(
            "security_audit_completed",
            format_report_message(report),
            "Security audit completed successfully",
            {
                "audit_completed": True,
                "vulnerabilities_found": len(report.vulnerabilities),
                "overall_risk": report.overall_risk.value,
            },
        )
    except Exception as exc:
        logger.error("Failed to finalize security report: %s", exc, exc_info=True)
        report = fallback_report()
        messages = [AIMessage(id=_new_id(), content=FINALIZE_FAILED_MESSAGE)]

    logger.info(
        "Security audit report finalized (risk=%s, vulnerabilities=%d, recommendations=%d)",
        report.overall_risk, len(report.vulnerabilities), len(report.recommendations),
    )
    emit_audit_report(
        report.overall_risk.value,
        len(report.vulnerabilities),
        len(report.recommendations),
        summary=report.summary,
    )
    emit_node_end("auditor", "Finalize Report", f"Risk: {report.overall_risk.value}")
    return {
        "security_report": report,
        "stage": AuditStage.DONE,
        "audit_messages": messages,
    }
