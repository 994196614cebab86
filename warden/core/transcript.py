"""Transcript helpers — grouping tool results by the agent turn that produced them.

A transcript is the ordered list of langchain messages the agent has exchanged:
``AIMessage`` for agent turns, ``ToolMessage`` for tool results and anything
else (usually ``HumanMessage``) for user input. Diagnosis passes mark their
tool results with ``additional_kwargs["is_diagnosis"]``.

Everything in this module is pure and safe to call from concurrent readers.
"""

from __future__ import annotations

from collections.abc import Sequence

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage

ToolGroup = list[ToolMessage]


def is_agent_message(message: BaseMessage) -> bool:
    return isinstance(message, AIMessage)


def is_tool_result(message: BaseMessage) -> bool:
    return isinstance(message, ToolMessage)


def is_error_result(message: BaseMessage) -> bool:
    return isinstance(message, ToolMessage) and message.status == "error"


def is_diagnosis_message(message: BaseMessage) -> bool:
    return bool((message.additional_kwargs or {}).get("is_diagnosis"))


def message_text(message: BaseMessage) -> str:
    """Return message content as plain text, flattening content blocks."""
    content = message.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


def format_message(message: BaseMessage) -> str:
    """Render a message as a single prompt-friendly line block."""
    role = {"ai": "agent", "tool": "tool", "human": "user"}.get(message.type, message.type)
    label = f"[{role}]"
    if isinstance(message, ToolMessage):
        label += f" {message.name or 'tool'} ({message.status})"
    text = message_text(message)
    if isinstance(message, AIMessage) and message.tool_calls:
        calls = ", ".join(f"{tc['name']}({tc.get('args', {})})" for tc in message.tool_calls)
        text = f"{text}\n  tool calls: {calls}" if text else f"tool calls: {calls}"
    return f"{label}: {text}"


def group_tool_messages(
    messages: Sequence[BaseMessage],
    include_diagnosis: bool = False,
) -> list[ToolGroup]:
    """Partition tool results into groups, one per triggering agent message.

    An agent message closes the open group and starts collecting. Tool results
    are appended while collecting (diagnosis results only if
    ``include_diagnosis``). Any other message closes the group and stops
    collecting. Empty groups are never emitted.
    """
    groups: list[ToolGroup] = []
    current: ToolGroup = []
    collecting = False

    for message in messages:
        if is_agent_message(message):
            if current:
                groups.append(current)
                current = []
            collecting = True
        elif is_tool_result(message):
            if collecting and (include_diagnosis or not is_diagnosis_message(message)):
                current.append(message)
        elif collecting:
            if current:
                groups.append(current)
                current = []
            collecting = False

    if current:
        groups.append(current)
    return groups


def calculate_error_rate(group: Sequence[ToolMessage]) -> float:
    """Fraction of tool results in ``group`` with error status (0.0 when empty)."""
    if not group:
        return 0.0
    errors = sum(1 for m in group if m.status == "error")
    return errors / len(group)


def has_recent_diagnosis(messages: Sequence[BaseMessage], group_count: int) -> bool:
    """True if a diagnosis result appears in the last ``group_count`` groups."""
    if group_count <= 0:
        return False
    recent = group_tool_messages(messages, include_diagnosis=True)[-group_count:]
    return any(is_diagnosis_message(m) for group in recent for m in group)


def count_recent_diagnoses(messages: Sequence[BaseMessage], window: int = 20) -> int:
    """Number of diagnosis tool results among the last ``window`` messages."""
    recent = list(messages)[-window:] if window > 0 else []
    return sum(1 for m in recent if is_tool_result(m) and is_diagnosis_message(m))


def get_last_failed_actions(messages: Sequence[BaseMessage]) -> str:
    """Collect (agent turn, failed tool result) pairs as prompt text.

    Scanning stops at the first successful tool result, so the output covers
    the leading run of failures the diagnosis should explain.
    """
    lines: list[str] = []
    i = 0
    while i < len(messages) - 1:
        current, nxt = messages[i], messages[i + 1]
        if is_agent_message(current) and is_error_result(nxt):
            lines.append(format_message(current))
            lines.append(format_message(nxt))
            i += 2
        elif is_tool_result(current) and not is_error_result(current):
            break
        else:
            i += 1
    return "\n".join(lines)
