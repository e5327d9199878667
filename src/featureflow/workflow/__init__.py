"""Feature request workflow state machine.

Sessions progress through:
- SELECTING_REPO → AWAITING_REQUEST → IMPLEMENTING (plan drafting)
- → AWAITING_APPROVAL → FINALIZING → MONITORING_PR → COMPLETED

REVISING loops back to AWAITING_APPROVAL on feedback, FINALIZING goes
straight to COMPLETED when no pull request URL is found, and ABORTED is
reachable from any state waiting on the user.
"""

from src.featureflow.workflow.models import (
    BUSY_STATES,
    TERMINAL_STATES,
    TRANSITIONS,
    FeatureRequestRecord,
    InvalidTransitionError,
    WorkflowEvent,
    WorkflowSession,
    WorkflowState,
    is_busy_state,
    is_terminal_state,
    next_state,
)
from src.featureflow.workflow.parsing import (
    FINAL_PLAN_DELIMITER,
    FINAL_SUMMARY_DELIMITER,
    AgentOutput,
    extract_pull_request_url,
    split_agent_output,
)

__all__ = [
    # Models
    "BUSY_STATES",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "FeatureRequestRecord",
    "InvalidTransitionError",
    "WorkflowEvent",
    "WorkflowSession",
    "WorkflowState",
    "is_busy_state",
    "is_terminal_state",
    "next_state",
    # Output parsing
    "FINAL_PLAN_DELIMITER",
    "FINAL_SUMMARY_DELIMITER",
    "AgentOutput",
    "extract_pull_request_url",
    "split_agent_output",
]
