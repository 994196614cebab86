"""Recovery graph nodes (escalation check plus the two diagnosis passes)."""
from __future__ import annotations

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.runnables import RunnableConfig

from warden.agents.models import render_prompt
from warden.core.concurrency import thread_locks
from warden.core.config import get_settings
from warden.core.error_patterns import analyze_error_patterns
from warden.core.escalation import decide_escalation
from warden.core.events import (
    emit_escalation,
    emit_human_help,
    emit_node_end,
    emit_node_start,
    emit_recovery,
)
from warden.core.logging import get_logger
from warden.core.recovery import (
    STRATEGY_ROLES,
    DiagnosisMissingException,
    HumanHelpRequest,
    build_recovery_context,
    get_recovery_store,
    record_attempt,
    start_attempt,
)
from warden.core.state import RecoveryGraphState
from warden.core.transcript import (
    format_message,
    get_last_failed_actions,
    group_tool_messages,
    is_error_result,
    is_tool_result,
)

from ._helpers import (
    REQUEST_HUMAN_HELP,
    _find_tool_call,
    _invoke_model,
    _new_id,
    _thread_id,
    diagnose_error,
)

logger = get_logger("core.nodes.recovery")


def escalation_node(state: RecoveryGraphState, config: RunnableConfig | None = None) -> dict:
    """Evaluate the transcript and record which recovery path (if any) applies."""
    decision = decide_escalation(state.messages)
    thread_id = _thread_id(state.thread_id, config)
    groups = len(group_tool_messages(state.messages))
    logger.info("Escalation decision for thread %s: %s (%d tool groups)", thread_id, decision, groups)
    emit_escalation(decision.value, thread_id=thread_id, groups=groups)
    return {"escalation": decision, "thread_id": thread_id}


def _failure_tail(messages: list[BaseMessage]) -> list[BaseMessage]:
    """Messages after the last successful tool result."""
    for index in range(len(messages) - 1, -1, -1):
        message = messages[index]
        if is_tool_result(message) and not is_error_result(message):
            return messages[index + 1:]
    return messages


def _diagnosis_tool_message(tool_call: dict, content: str, **flags) -> ToolMessage:
    return ToolMessage(
        id=_new_id(),
        tool_call_id=tool_call.get("id") or "",
        name=tool_call.get("name") or diagnose_error.name,
        content=content,
        status="success",
        additional_kwargs={"is_diagnosis": True, **flags},
    )


def diagnose_error_node(state: RecoveryGraphState, config: RunnableConfig | None = None) -> dict:
    """Standard diagnosis: ask the programmer model to explain the recent failures.

    The model must answer through the ``diagnose_error`` tool; anything else
    raises DiagnosisMissingException.
    """
    thread_id = _thread_id(state.thread_id, config)
    emit_node_start("recovery", "Diagnose Error", detail=f"thread {thread_id}")

    failed_actions = get_last_failed_actions(_failure_tail(list(state.messages)))
    if not failed_actions:
        failed_actions = "\n".join(format_message(m) for m in state.messages[-10:])

    prompt = render_prompt(
        "diagnose_error",
        current_task=state.current_task or "No current task recorded.",
        failed_actions=failed_actions,
        error_analysis=analyze_error_patterns(state.messages),
    )
    response = _invoke_model(
        "programmer",
        [SystemMessage(content=prompt), HumanMessage(content="Diagnose the failures above.")],
        tools=[diagnose_error],
        tool_choice=diagnose_error.name,
    )

    tool_call = _find_tool_call(response, diagnose_error.name)
    if tool_call is None:
        logger.error("Diagnosis produced no diagnose_error call (thread=%s)", thread_id)
        raise DiagnosisMissingException(thread_id, 0)

    diagnosis = str(tool_call.get("args", {}).get("diagnosis", ""))
    logger.info("Error diagnosis completed (thread=%s): %s", thread_id, diagnosis[:200])
    emit_node_end("recovery", "Diagnose Error", diagnosis[:400])

    tool_message = _diagnosis_tool_message(tool_call, f"Error diagnosis: {diagnosis}")
    return {"messages": [response, tool_message]}


def _human_help_message(request: HumanHelpRequest) -> AIMessage:
    return AIMessage(
        id=_new_id(),
        content=request.message,
        tool_calls=[{
            "id": _new_id(),
            "name": REQUEST_HUMAN_HELP,
            "args": {"help_request": request.help_request},
        }],
    )


def smart_error_recovery_node(state: RecoveryGraphState, config: RunnableConfig | None = None) -> dict:
    """Enhanced recovery with strategy rotation and a circuit breaker.

    Runs under the thread's exclusive lock. Past the attempt budget no model
    is called; a ``request_human_help`` message is returned instead. A
    model response without a ``diagnose_error`` call raises
    DiagnosisMissingException (the attempt still counts).
    """
    settings = get_settings()
    thread_id = _thread_id(state.thread_id, config)
    max_attempts = settings.max_recovery_attempts

    with thread_locks.exclusive(thread_id):
        recovery_state = get_recovery_store().get_or_create(thread_id)
        outcome = start_attempt(recovery_state, max_attempts)

        if isinstance(outcome, HumanHelpRequest):
            emit_human_help(thread_id, outcome.retry_count, outcome.help_request)
            message = _human_help_message(outcome)
            return {"messages": [message]}

        strategy = outcome
        role = STRATEGY_ROLES[strategy]
        retry_count = recovery_state.retry_count
        logger.info(
            "Starting smart error recovery (thread=%s, attempt=%d, strategy=%s, role=%s)",
            thread_id, retry_count, strategy, role,
        )
        emit_node_start("recovery", "Smart Error Recovery", detail=f"attempt {retry_count}/{max_attempts}")

        context = build_recovery_context(
            state.messages,
            current_task=state.current_task,
            completed_tasks=state.completed_tasks,
            codebase_tree=state.codebase_tree,
        )
        system_prompt = render_prompt(
            "smart_recovery_system",
            strategy=strategy.value.replace("_", " "),
            error_analysis=context.error_analysis,
            current_task=context.current_task,
            completed_tasks=context.completed_tasks,
            codebase_tree=context.codebase_tree,
            alternative_approaches=context.alternative_approaches,
        )
        user_prompt = render_prompt("smart_recovery_user", conversation_history=context.conversation_history)

        response = _invoke_model(
            role,
            [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)],
            tools=[diagnose_error],
            tool_choice=diagnose_error.name,
        )
        tool_call = _find_tool_call(response, diagnose_error.name)
        if tool_call is None:
            logger.error(
                "Smart recovery produced no diagnose_error call (thread=%s, attempt=%d)",
                thread_id, retry_count,
            )
            raise DiagnosisMissingException(thread_id, retry_count)

        record_attempt(recovery_state, strategy, state.messages)

    diagnosis = str(tool_call.get("args", {}).get("diagnosis", ""))
    logger.info(
        "Smart error recovery completed (thread=%s, attempt=%d, strategy=%s)",
        thread_id, retry_count, strategy,
    )
    emit_recovery(thread_id, retry_count, strategy.value, detail=diagnosis)
    emit_node_end("recovery", "Smart Error Recovery", diagnosis[:400])

    tool_message = _diagnosis_tool_message(
        tool_call,
        (
            "Smart error recovery completed. Analysis includes pattern detection, "
            "alternative approaches, and circuit breaker protection. "
            f"Retry attempt {retry_count}/{max_attempts}."
        ),
        is_smart_recovery=True,
        retry_count=retry_count,
        model_used=role,
        strategy=strategy.value,
    )
    return {"messages": [response, tool_message]}
