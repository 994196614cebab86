"""Error classification and failure-pattern analysis over a transcript.

Classification is a first-match scan of ``ERROR_MARKERS``; the table is plain
data so it can be swapped for a different marker set (or a structured model
contract) without touching the analysis code.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Sequence
from enum import StrEnum

from langchain_core.messages import BaseMessage
from pydantic import BaseModel, Field

from warden.core.transcript import is_agent_message, is_error_result, message_text


class ErrorCategory(StrEnum):
    SYNTAX = "syntax"
    RESOURCE_NOT_FOUND = "resource_not_found"
    PERMISSION = "permission"
    COMMAND_NOT_FOUND = "command_not_found"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


# Ordered, first match wins. RESOURCE_NOT_FOUND is checked before
# COMMAND_NOT_FOUND, so a bare "not found" would claim "bash: x: command not
# found" too. The lookbehind on that pattern deliberately leaves shell
# "command not found" output to COMMAND_NOT_FOUND.
ERROR_MARKERS: tuple[tuple[ErrorCategory, tuple[re.Pattern[str], ...]], ...] = (
    (ErrorCategory.SYNTAX, (
        re.compile(r"syntax\s?error", re.IGNORECASE),
        re.compile(r"unexpected token", re.IGNORECASE),
        re.compile(r"invalid syntax", re.IGNORECASE),
    )),
    (ErrorCategory.RESOURCE_NOT_FOUND, (
        re.compile(r"no such file", re.IGNORECASE),
        re.compile(r"(?<!command )not found", re.IGNORECASE),
        re.compile(r"does not exist", re.IGNORECASE),
        re.compile(r"FileNotFoundError", re.IGNORECASE),
    )),
    (ErrorCategory.PERMISSION, (
        re.compile(r"permission", re.IGNORECASE),
        re.compile(r"access denied", re.IGNORECASE),
        re.compile(r"operation not permitted", re.IGNORECASE),
    )),
    (ErrorCategory.COMMAND_NOT_FOUND, (
        re.compile(r"command not found", re.IGNORECASE),
        re.compile(r"not recognized", re.IGNORECASE),
    )),
    (ErrorCategory.TIMEOUT, (
        re.compile(r"timed?\s?out", re.IGNORECASE),
        re.compile(r"deadline exceeded", re.IGNORECASE),
    )),
)

_COMMAND_LINE_RE = re.compile(r"Command:\s*(.+?)(?:\n|$)", re.IGNORECASE)
_BACKTICK_RE = re.compile(r"`([^`]+)`")

_RECENT_COMMANDS = 3


class ErrorPattern(BaseModel):
    """Tally of failures sharing one error category."""
    category: ErrorCategory
    count: int = 0
    last_occurrence: int = -1   # transcript index of the latest failure
    commands: list[str] = Field(default_factory=list)

    @property
    def recent_commands(self) -> list[str]:
        return self.commands[-_RECENT_COMMANDS:]

    def record(self, index: int, command: str) -> None:
        self.count += 1
        self.last_occurrence = index
        self.commands.append(command)


def classify_error(message: BaseMessage | str) -> ErrorCategory:
    """Map error text to an ErrorCategory by the first matching marker."""
    text = message if isinstance(message, str) else message_text(message)
    for category, patterns in ERROR_MARKERS:
        if any(p.search(text) for p in patterns):
            return category
    return ErrorCategory.UNKNOWN


def extract_failed_command(message: BaseMessage) -> str:
    """Best-effort command string for a failed tool result.

    Prefers an explicit ``Command: ...`` line, then the first back-ticked
    span, then the tool name.
    """
    text = message_text(message)
    match = _COMMAND_LINE_RE.search(text) or _BACKTICK_RE.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return getattr(message, "name", None) or "unknown"


def collect_error_patterns(messages: Sequence[BaseMessage]) -> dict[ErrorCategory, ErrorPattern]:
    """Group error tool results by category, in first-seen order."""
    patterns: dict[ErrorCategory, ErrorPattern] = {}
    for index, message in enumerate(messages):
        if not is_error_result(message):
            continue
        category = classify_error(message)
        pattern = patterns.setdefault(category, ErrorPattern(category=category))
        pattern.record(index, extract_failed_command(message))
    return patterns


def repeated_failed_commands(
    messages: Sequence[BaseMessage],
    min_count: int = 2,
) -> list[tuple[str, int]]:
    """Failing commands seen at least ``min_count`` times, most frequent first.

    Ties keep first-seen order (Counter preserves insertion order and
    ``sorted`` is stable).
    """
    counts = Counter(extract_failed_command(m) for m in messages if is_error_result(m))
    repeated = [(cmd, n) for cmd, n in counts.items() if n >= min_count]
    return sorted(repeated, key=lambda item: item[1], reverse=True)


def analyze_error_patterns(messages: Sequence[BaseMessage]) -> str:
    """Markdown report of error categories and repeated failing commands."""
    patterns = collect_error_patterns(messages)

    lines = ["## Error Pattern Analysis:"]
    if not patterns:
        lines.append("- No clear error patterns detected")
    for pattern in patterns.values():
        label = pattern.category.value.replace("_", " ").upper()
        lines.append(f"- **{label}**: {pattern.count} occurrences")
        lines.append(f"  - Commands: {', '.join(pattern.recent_commands)}")

    lines.append("")
    lines.append("## Command Repetition Analysis:")
    repeated = repeated_failed_commands(messages)
    if repeated:
        lines.append("- **REPEATED FAILED COMMANDS** (avoid these):")
        for cmd, count in repeated:
            lines.append(f'  - "{cmd}": failed {count} times')
    else:
        lines.append("- No obviously repeated failed commands detected")

    return "\n".join(lines) + "\n"


def detect_stuck_pattern(messages: Sequence[BaseMessage], window_size: int = 10) -> bool:
    """True if one tool failed right after an agent turn 3+ times in the window."""
    recent = list(messages)[-window_size:] if window_size > 0 else []
    failures: Counter[str] = Counter()
    for current, nxt in zip(recent, recent[1:]):
        if is_agent_message(current) and is_error_result(nxt):
            failures[nxt.name or "unknown_command"] += 1
    return any(count >= 3 for count in failures.values())
