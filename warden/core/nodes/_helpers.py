"""Shared helpers used across node modules — model invocation and tool schemas."""
from __future__ import annotations

import uuid

from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.runnables import RunnableConfig
from langchain_core.tools import tool

from warden.agents.models import get_llm
from warden.core.logging import get_logger

logger = get_logger("core.nodes._helpers")

REQUEST_HUMAN_HELP = "request_human_help"


# -- Structured-result tools -------------------------------------------------
# The model "answers" by calling these; the bodies only run if a caller
# executes the tool call, which the graphs here never do.

@tool
def diagnose_error(diagnosis: str) -> str:
    """Record a diagnosis of why the recent commands failed and what to do differently.

    Args:
        diagnosis: Root cause of the failures and the alternative approach to take next.
    """
    return diagnosis


@tool
def request_security_recommendations(reason: str) -> str:
    """Request a prioritized security recommendations pass for the findings above.

    Args:
        reason: One line on why the findings need remediation guidance.
    """
    return reason


def _new_id() -> str:
    return str(uuid.uuid4())


def _thread_id(state_thread_id: str, config: RunnableConfig | None) -> str:
    """Thread id from the run config, falling back to the one carried in state."""
    configurable = (config or {}).get("configurable") or {}
    return str(configurable.get("thread_id") or state_thread_id or "default")


def _invoke_model(role: str, messages: list[BaseMessage], tools: list | None = None,
                  tool_choice: str | None = None) -> AIMessage:
    """Single model round-trip. Tools are offered but never executed here."""
    llm = get_llm(role)
    if tools:
        llm = llm.bind_tools(tools, tool_choice=tool_choice) if tool_choice else llm.bind_tools(tools)
    response = llm.invoke(messages)
    if not isinstance(response, AIMessage):
        response = AIMessage(content=getattr(response, "content", str(response)))
    logger.info(
        "model      | role=%s | tool_calls=%d | content_len=%d",
        role,
        len(response.tool_calls or []),
        len(response.content) if isinstance(response.content, str) else 0,
    )
    return response


def _find_tool_call(response: AIMessage, name: str) -> dict | None:
    for call in response.tool_calls or []:
        if call.get("name") == name:
            return call
    return None
