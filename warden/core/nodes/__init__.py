"""LangGraph node implementations — split into per-graph modules.

``from warden.core.nodes import scan_code_changes_node`` etc. work for every
node; helpers tests reach for are re-exported too.
"""

# -- Node functions --------------------------------------------------------

from .recovery import (  # noqa: F401
    diagnose_error_node,
    escalation_node,
    smart_error_recovery_node,
)
from .audit import (  # noqa: F401
    finalize_report_node,
    generate_recommendations_node,
    initialize_audit_node,
    scan_code_changes_node,
)

# -- Helpers re-exported for test & orchestrator use ------------------------

from ._helpers import (  # noqa: F401
    REQUEST_HUMAN_HELP,
    _find_tool_call,
    _invoke_model,
    _thread_id,
    diagnose_error,
    request_security_recommendations,
)
from .audit import (  # noqa: F401
    FINALIZE_FAILED_MESSAGE,
    NO_CHANGES_MESSAGE,
    RECOMMEND_FAILED_MESSAGE,
    SCAN_FAILED_MESSAGE,
)
from .recovery import _failure_tail  # noqa: F401

__all__ = [
    # Recovery graph
    "diagnose_error_node",
    "escalation_node",
    "smart_error_recovery_node",
    # Audit graph
    "finalize_report_node",
    "generate_recommendations_node",
    "initialize_audit_node",
    "scan_code_changes_node",
    # Structured-result tools
    "diagnose_error",
    "request_security_recommendations",
]
