"""Prometheus metrics for the feature request workflow.

Metrics Defined:
- featureflow_transitions_total: Counter of state transitions
- featureflow_agent_runs_total: Counter of coding agent runs by outcome
- featureflow_agent_run_duration_seconds: Histogram of agent run time
- featureflow_pr_checks_total: Counter of pull request status checks
- featureflow_active_sessions: Gauge of in-memory sessions per state

Metrics are exposed at the `/metrics` endpoint in Prometheus format.
"""

from typing import Iterable, Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from src.featureflow.workflow.models import WorkflowSession, WorkflowState


# Agent runs range from under a minute (plan drafting on a small repo) to
# well over an hour (implementation with a full test suite)
AGENT_DURATION_BUCKETS = (
    10.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    1200.0,
    1800.0,
    3600.0,
    7200.0,
)


class WorkflowMetrics:
    """Container for all workflow Prometheus metrics.

    Pass a dedicated CollectorRegistry in tests so repeated construction
    does not collide with the default registry.

    Example:
        >>> metrics = WorkflowMetrics(registry=CollectorRegistry())
        >>> metrics.record_transition(WorkflowState.IMPLEMENTING, WorkflowState.AWAITING_APPROVAL)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.transitions_total = Counter(
            "featureflow_transitions_total",
            "Total number of workflow state transitions",
            labelnames=["from_state", "to_state"],
            registry=self.registry,
        )

        self.agent_runs_total = Counter(
            "featureflow_agent_runs_total",
            "Total number of coding agent runs",
            labelnames=["stage", "result"],
            registry=self.registry,
        )

        self.agent_run_duration_seconds = Histogram(
            "featureflow_agent_run_duration_seconds",
            "Wall-clock duration of coding agent runs",
            labelnames=["stage"],
            buckets=AGENT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.pr_checks_total = Counter(
            "featureflow_pr_checks_total",
            "Total number of pull request status checks",
            labelnames=["result"],
            registry=self.registry,
        )

        self.active_sessions = Gauge(
            "featureflow_active_sessions",
            "Number of in-memory workflow sessions per state",
            labelnames=["state"],
            registry=self.registry,
        )

    def record_transition(
        self,
        from_state: WorkflowState,
        to_state: WorkflowState,
    ) -> None:
        self.transitions_total.labels(
            from_state=from_state.value,
            to_state=to_state.value,
        ).inc()

    def record_agent_run(
        self,
        stage: WorkflowState,
        result: str,
        duration_seconds: Optional[float] = None,
    ) -> None:
        """Count one agent run.

        Args:
            stage: The busy state the run belonged to.
            result: "success", "failure" (non-zero exit) or "dispatch_error".
            duration_seconds: Run time, when the process actually ran.
        """
        self.agent_runs_total.labels(stage=stage.value, result=result).inc()
        if duration_seconds is not None:
            self.agent_run_duration_seconds.labels(stage=stage.value).observe(
                duration_seconds
            )

    def record_pr_check(self, result: str) -> None:
        self.pr_checks_total.labels(result=result).inc()

    def update_active_sessions(self, sessions: Iterable[WorkflowSession]) -> None:
        counts = {state: 0 for state in WorkflowState}
        for session in sessions:
            counts[session.state] += 1
        for state, count in counts.items():
            self.active_sessions.labels(state=state.value).set(count)

    def generate(self) -> bytes:
        return generate_latest(self.registry)
