"""Periodic pull request status polling.

Every interval the monitor looks at each session parked in MONITORING_PR
and asks the hosting service for its pull request's state. A merged or
closed pull request completes the session. Query failures are logged and
retried on the next tick, indefinitely.
"""

import asyncio
import logging
from typing import Optional

from src.featureflow.github.cli import GitHubCLI, PullRequestQueryError
from src.featureflow.metrics import WorkflowMetrics
from src.featureflow.runner.process import ProcessDispatchError
from src.featureflow.state.store import SessionStore
from src.featureflow.workflow.machine import FeatureRequestWorkflow
from src.featureflow.workflow.models import WorkflowSession, WorkflowState

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 300


class PullRequestMonitor:
    """Polls monitored pull requests on a fixed interval.

    Attributes:
        store: Session store holding the monitored sessions.
        workflow: Workflow that performs the terminal transition.
        github: gh CLI wrapper used for status queries.
        interval_seconds: Delay between ticks.
        metrics: Optional Prometheus metrics.
    """

    def __init__(
        self,
        store: SessionStore,
        workflow: FeatureRequestWorkflow,
        github: GitHubCLI,
        interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS,
        metrics: Optional[WorkflowMetrics] = None,
    ):
        self.store = store
        self.workflow = workflow
        self.github = github
        self.interval_seconds = interval_seconds
        self.metrics = metrics
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling in a background task on the running loop."""
        if self.running:
            logger.warning("Pull request monitor already running")
            return
        logger.info(
            "Starting pull request monitor",
            extra={"interval_seconds": self.interval_seconds},
        )
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Pull request monitor stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.check_all()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Pull request monitor tick failed")

    async def check_all(self) -> int:
        """Run one polling tick.

        Returns:
            Number of sessions completed during this tick.
        """
        monitored = [
            session
            for session in self.store.in_state(WorkflowState.MONITORING_PR)
            if session.pr_url
        ]
        if not monitored:
            return 0

        logger.info(
            "Checking pull request statuses",
            extra={"count": len(monitored)},
        )

        completed = 0
        for session in monitored:
            if await self._check(session):
                completed += 1
        return completed

    async def _check(self, session: WorkflowSession) -> bool:
        try:
            pr_state = await self.github.pull_request_state(session.pr_url)
        except (PullRequestQueryError, ProcessDispatchError) as exc:
            logger.error(
                "Pull request status check failed",
                extra={
                    "thread_id": session.thread_id,
                    "pr_url": session.pr_url,
                    "error": str(exc),
                },
            )
            self._record("error")
            return False

        self._record(pr_state.value.lower())
        return await self.workflow.resolve_pull_request(session, pr_state)

    def _record(self, result: str) -> None:
        if self.metrics is not None:
            self.metrics.record_pr_check(result)
