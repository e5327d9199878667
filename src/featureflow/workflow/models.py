"""Feature request workflow models.

This module defines the data models for the per-thread workflow state
machine, including:
- WorkflowState: Enum of all workflow states
- WorkflowEvent: Enum of the events that drive transitions
- TRANSITIONS: Table mapping (state, event) pairs to the next state
- WorkflowSession: In-memory state of one active thread
- FeatureRequestRecord: Durable twin of a session, with audit artifacts

The models use Pydantic for validation, consistent with config.py.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from pydantic import BaseModel, Field


class WorkflowState(str, Enum):
    """States a feature request thread moves through.

    State Flow:
        selecting_repo → awaiting_request → implementing → awaiting_approval
        → [revising → awaiting_approval]* → finalizing
        → (monitoring_pr → completed) | completed

    Any state that waits on user input can move to ABORTED.

    Attributes:
        SELECTING_REPO: Waiting for the user to name a repository.
        AWAITING_REQUEST: Waiting for the feature description.
        IMPLEMENTING: Coding agent drafting the initial plan.
        AWAITING_APPROVAL: Plan posted; waiting for approve/abort/feedback.
        REVISING: Coding agent revising the plan from feedback.
        FINALIZING: Coding agent implementing the plan and opening a PR.
        MONITORING_PR: Waiting for the pull request to be merged or closed.
        COMPLETED: Workflow finished.
        ABORTED: Workflow cancelled by the user.
    """

    SELECTING_REPO = "SELECTING_REPO"
    AWAITING_REQUEST = "AWAITING_REQUEST"
    IMPLEMENTING = "IMPLEMENTING"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    REVISING = "REVISING"
    FINALIZING = "FINALIZING"
    MONITORING_PR = "MONITORING_PR"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"


class WorkflowEvent(str, Enum):
    """Events that move a session between states.

    Attributes:
        REPO_SELECTED: A known repository with an existing path was chosen.
        REQUEST_SUBMITTED: The feature description was received.
        PLAN_READY: A plan drafting or revision run finished.
        APPROVE: The initiator approved the current plan.
        FEEDBACK: The initiator asked for a revision.
        ABORT: The initiator cancelled the workflow.
        PR_OPENED: The implementation run reported a pull request URL.
        NO_PR: The implementation run finished without a pull request.
        PR_RESOLVED: The monitored pull request was merged or closed.
        INTERRUPTED: A coding agent run could not be launched or was lost
            to a restart; the session returns to where the user can retry.
    """

    REPO_SELECTED = "repo_selected"
    REQUEST_SUBMITTED = "request_submitted"
    PLAN_READY = "plan_ready"
    APPROVE = "approve"
    FEEDBACK = "feedback"
    ABORT = "abort"
    PR_OPENED = "pr_opened"
    NO_PR = "no_pr"
    PR_RESOLVED = "pr_resolved"
    INTERRUPTED = "interrupted"


TERMINAL_STATES: FrozenSet[WorkflowState] = frozenset(
    {WorkflowState.COMPLETED, WorkflowState.ABORTED}
)

BUSY_STATES: FrozenSet[WorkflowState] = frozenset(
    {
        WorkflowState.IMPLEMENTING,
        WorkflowState.REVISING,
        WorkflowState.FINALIZING,
    }
)


# Transition table
#
# Every state change goes through this table. A (state, event) pair that
# is not listed is rejected with InvalidTransitionError.
TRANSITIONS: Dict[Tuple[WorkflowState, WorkflowEvent], WorkflowState] = {
    (WorkflowState.SELECTING_REPO, WorkflowEvent.REPO_SELECTED): WorkflowState.AWAITING_REQUEST,
    (WorkflowState.SELECTING_REPO, WorkflowEvent.ABORT): WorkflowState.ABORTED,
    (WorkflowState.AWAITING_REQUEST, WorkflowEvent.REQUEST_SUBMITTED): WorkflowState.IMPLEMENTING,
    (WorkflowState.AWAITING_REQUEST, WorkflowEvent.ABORT): WorkflowState.ABORTED,
    (WorkflowState.IMPLEMENTING, WorkflowEvent.PLAN_READY): WorkflowState.AWAITING_APPROVAL,
    (WorkflowState.IMPLEMENTING, WorkflowEvent.INTERRUPTED): WorkflowState.AWAITING_REQUEST,
    (WorkflowState.AWAITING_APPROVAL, WorkflowEvent.APPROVE): WorkflowState.FINALIZING,
    (WorkflowState.AWAITING_APPROVAL, WorkflowEvent.FEEDBACK): WorkflowState.REVISING,
    (WorkflowState.AWAITING_APPROVAL, WorkflowEvent.ABORT): WorkflowState.ABORTED,
    (WorkflowState.REVISING, WorkflowEvent.PLAN_READY): WorkflowState.AWAITING_APPROVAL,
    (WorkflowState.REVISING, WorkflowEvent.INTERRUPTED): WorkflowState.AWAITING_APPROVAL,
    (WorkflowState.FINALIZING, WorkflowEvent.PR_OPENED): WorkflowState.MONITORING_PR,
    (WorkflowState.FINALIZING, WorkflowEvent.NO_PR): WorkflowState.COMPLETED,
    (WorkflowState.FINALIZING, WorkflowEvent.INTERRUPTED): WorkflowState.AWAITING_APPROVAL,
    (WorkflowState.MONITORING_PR, WorkflowEvent.PR_RESOLVED): WorkflowState.COMPLETED,
}


class InvalidTransitionError(Exception):
    """Raised when an event is not allowed in the session's current state.

    Attributes:
        state: The current state.
        event: The rejected event.
    """

    def __init__(self, state: WorkflowState, event: WorkflowEvent):
        self.state = state
        self.event = event
        super().__init__(
            f"Event {event.value} is not allowed in state {state.value}"
        )


def next_state(state: WorkflowState, event: WorkflowEvent) -> WorkflowState:
    """Look up the state that follows ``event`` in ``state``.

    Raises:
        InvalidTransitionError: If the pair is not in TRANSITIONS.

    Example:
        >>> next_state(WorkflowState.AWAITING_APPROVAL, WorkflowEvent.APPROVE)
        <WorkflowState.FINALIZING: 'FINALIZING'>
    """
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(state, event) from None


def is_terminal_state(state: WorkflowState) -> bool:
    return state in TERMINAL_STATES


def is_busy_state(state: WorkflowState) -> bool:
    return state in BUSY_STATES


class FeatureRequestRecord(BaseModel):
    """Durable record of a feature request thread.

    One row per thread in the ``feature_requests`` table. Besides the
    session fields it keeps the agent's intermediate output for audit
    and debugging after the in-memory session is gone.

    Attributes:
        thread_id: Conversation thread identifier (unique).
        channel_id: Channel the thread lives in.
        username: Display name of the initiating user.
        user_id: Identity of the initiating user.
        repo_name: Selected repository name.
        repo_path: Filesystem path of the selected repository.
        request_text: The user's feature description.
        plan_thoughts: Agent reasoning preceding the latest plan.
        final_plan: Latest plan body.
        implementation_thoughts: Agent reasoning preceding the summary.
        final_summary: Implementation summary.
        state: Workflow state; None for rows written before states existed.
        pr_url: Pull request URL detected in the summary.
        created_at: Row creation time.
        last_updated: Time of the last update.
    """

    thread_id: str = Field(..., min_length=1)
    channel_id: Optional[str] = None
    username: Optional[str] = None
    user_id: Optional[str] = None
    repo_name: Optional[str] = None
    repo_path: Optional[str] = None
    request_text: Optional[str] = None
    plan_thoughts: Optional[str] = None
    final_plan: Optional[str] = None
    implementation_thoughts: Optional[str] = None
    final_summary: Optional[str] = None
    state: Optional[WorkflowState] = None
    pr_url: Optional[str] = None
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None


class WorkflowSession(BaseModel):
    """In-memory state of one active feature request thread.

    Attributes:
        thread_id: Conversation thread identifier; immutable once created.
        state: Current workflow state.
        user_id: The only user allowed to drive transitions.
        username: Display name of the initiating user.
        channel_id: Channel to reply in.
        repo_name: Selected repository name.
        repo_path: Validated filesystem path of the repository.
        request_text: Original feature description.
        plan_text: Latest plan body; replaced on each revision.
        pr_url: Pull request URL once detected.
    """

    thread_id: str = Field(..., min_length=1, frozen=True)
    state: WorkflowState = WorkflowState.SELECTING_REPO
    user_id: Optional[str] = None
    username: Optional[str] = None
    channel_id: Optional[str] = None
    repo_name: Optional[str] = None
    repo_path: Optional[str] = None
    request_text: Optional[str] = None
    plan_text: Optional[str] = None
    pr_url: Optional[str] = None

    @classmethod
    def from_record(cls, record: FeatureRequestRecord) -> "WorkflowSession":
        """Rebuild a session from its durable record.

        Rows without a state predate state tracking; they resume at
        AWAITING_REQUEST.
        """
        return cls(
            thread_id=record.thread_id,
            state=record.state or WorkflowState.AWAITING_REQUEST,
            user_id=record.user_id,
            username=record.username,
            channel_id=record.channel_id,
            repo_name=record.repo_name,
            repo_path=record.repo_path,
            request_text=record.request_text,
            plan_text=record.final_plan,
            pr_url=record.pr_url,
        )

    def to_record(self) -> FeatureRequestRecord:
        return FeatureRequestRecord(
            thread_id=self.thread_id,
            channel_id=self.channel_id or "unknown",
            username=self.username or "unknown",
            user_id=self.user_id,
            repo_name=self.repo_name or "unknown",
            repo_path=self.repo_path,
            request_text=self.request_text,
            final_plan=self.plan_text,
            state=self.state,
            pr_url=self.pr_url,
        )
