"""Security audit report model and the heuristic synthesizer that fills it.

The synthesizer folds the free-text analysis accumulated during an audit run
into a ``SecurityAuditReport``:

- overall risk from keyword tiers (first matching tier wins)
- recommendations from list lines mentioning recommend / should / consider
- a bounded summary

Vulnerabilities are left empty; structured findings need a structured model
contract rather than text scraping.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from enum import StrEnum

from langchain_core.messages import BaseMessage
from pydantic import BaseModel, ConfigDict, Field

from warden.core.transcript import message_text

SUMMARY_MAX_CHARS = 500
MAX_RECOMMENDATIONS = 10
ELLIPSIS = "..."
EMPTY_SUMMARY = "Security audit completed with no specific issues identified."


class Severity(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class RiskLevel(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SecurityVulnerability(BaseModel):
    model_config = ConfigDict(frozen=True)

    severity: Severity
    category: str
    description: str
    file: str
    line: int | None = None
    recommendation: str
    cwe_id: str | None = None


class SecurityAuditReport(BaseModel):
    """Immutable result of one audit run."""
    model_config = ConfigDict(frozen=True)

    vulnerabilities: tuple[SecurityVulnerability, ...] = ()
    summary: str
    overall_risk: RiskLevel
    recommendations: tuple[str, ...] = Field(default=(), max_length=MAX_RECOMMENDATIONS)


# Checked top to bottom; lower tiers are skipped once one matches.
RISK_KEYWORDS: tuple[tuple[RiskLevel, tuple[str, ...]], ...] = (
    (RiskLevel.CRITICAL, ("critical", "severe", "high risk", "vulnerability")),
    (RiskLevel.HIGH, ("important", "significant", "security issue")),
    (RiskLevel.MEDIUM, ("consider", "recommend", "improve")),
)

RECOMMENDATION_RE = re.compile(
    r"^\s*(?:\d+[.)]?|[-*])\s*(?P<body>.*\b(?:recommend|should|consider).*)$",
    re.IGNORECASE,
)

_FALLBACK_SUMMARY = (
    "Security audit completed but report generation failed. "
    "Please review the security analysis above manually."
)
_FALLBACK_RECOMMENDATION = "Manual review of security analysis is recommended"


def collect_analysis_text(messages: Sequence[BaseMessage]) -> str:
    """Join the non-empty text of every message, separated by blank lines."""
    texts = (message_text(m) for m in messages)
    return "\n\n".join(t for t in texts if t)


def classify_risk(text: str) -> RiskLevel:
    lowered = text.lower()
    for level, keywords in RISK_KEYWORDS:
        if any(k in lowered for k in keywords):
            return level
    return RiskLevel.LOW


def extract_recommendations(text: str, limit: int = MAX_RECOMMENDATIONS) -> list[str]:
    """List lines (digit / dash / asterisk marker) that recommend something, marker stripped."""
    found: list[str] = []
    for line in text.splitlines():
        match = RECOMMENDATION_RE.match(line)
        if match:
            found.append(match.group("body").strip())
            if len(found) >= limit:
                break
    return found


def summarize(text: str, max_chars: int = SUMMARY_MAX_CHARS) -> str:
    if not text:
        return EMPTY_SUMMARY
    if len(text) > max_chars:
        return text[:max_chars] + ELLIPSIS
    return text


def synthesize_report(
    analysis_text: str,
    summary_max_chars: int = SUMMARY_MAX_CHARS,
    max_recommendations: int = MAX_RECOMMENDATIONS,
) -> SecurityAuditReport:
    limit = min(max_recommendations, MAX_RECOMMENDATIONS)
    return SecurityAuditReport(
        vulnerabilities=(),
        summary=summarize(analysis_text, summary_max_chars),
        overall_risk=classify_risk(analysis_text),
        recommendations=tuple(extract_recommendations(analysis_text, limit)),
    )


def fallback_report() -> SecurityAuditReport:
    """Report used when synthesis itself fails."""
    return SecurityAuditReport(
        vulnerabilities=(),
        summary=_FALLBACK_SUMMARY,
        overall_risk=RiskLevel.MEDIUM,
        recommendations=(_FALLBACK_RECOMMENDATION,),
    )


_RISK_ICON = {
    RiskLevel.CRITICAL: "🚨",
    RiskLevel.HIGH: "⚠️",
    RiskLevel.MEDIUM: "⚡",
    RiskLevel.LOW: "ℹ️",
}


def format_report_message(report: SecurityAuditReport, top: int = 3) -> str:
    """Human-readable completion message for the transcript."""
    lines = [
        f"{_RISK_ICON[report.overall_risk]} **Security Audit Complete**",
        "",
        f"**Overall Risk Level:** {report.overall_risk.value.upper()}",
        f"**Vulnerabilities Found:** {len(report.vulnerabilities)}",
        "**Files Scanned:** Changed files in this session",
        "",
        report.summary,
    ]
    if report.recommendations:
        lines.append("")
        lines.append("**Key Recommendations:**")
        lines.extend(f"{i}. {rec}" for i, rec in enumerate(report.recommendations[:top], start=1))
    lines.append("")
    lines.append("See detailed security analysis above for complete findings and recommendations.")
    return "\n".join(lines)
