"""Feature request workflow state machine.

This module implements the FeatureRequestWorkflow class that drives one
feature request per conversation thread:

    select repository → describe feature → agent drafts plan
    → approve / revise / abort → agent implements and opens a PR
    → monitor PR until merged or closed

Inbound messages are dispatched on the session's current state; every
state change goes through the TRANSITIONS table in models.py. Each change
is persisted through the SessionStore before the reply announcing it is
posted.

Busy states (IMPLEMENTING, REVISING, FINALIZING) hold a session while its
coding agent run is outstanding. Messages arriving in that window get a
busy notice, so a thread never has two runs at once, while other threads
keep being served by the event loop.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional

from src.featureflow.catalog import RepositoryCatalog
from src.featureflow.chat.models import ConversationEvent
from src.featureflow.chat.slack import ConversationClient, ConversationError
from src.featureflow.github.cli import PullRequestState
from src.featureflow.metrics import WorkflowMetrics
from src.featureflow.runner.agent import CodingAgent
from src.featureflow.runner.process import ProcessDispatchError
from src.featureflow.state.store import SessionStore
from src.featureflow.workflow.models import (
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
    extract_pull_request_url,
    split_agent_output,
)
from src.featureflow.workflow.prompts import (
    build_implementation_prompt,
    build_plan_prompt,
    build_revision_prompt,
)


logger = logging.getLogger(__name__)

APPROVE_COMMAND = "approve"
ABORT_COMMAND = "abort"

InboundHandler = Callable[[WorkflowSession, ConversationEvent, str], Awaitable[None]]


class FeatureRequestWorkflow:
    """Per-thread feature request state machine.

    Attributes:
        store: Active sessions and their durable records.
        catalog: Repositories users may select.
        agent: Coding agent used for planning and implementation.
        chat: Client used to reply in threads.
        trigger_phrase: Mention text that starts a new workflow.
        metrics: Optional Prometheus metrics.

    Example:
        >>> workflow = FeatureRequestWorkflow(store, catalog, agent, slack)
        >>> await workflow.restore()
        >>> await workflow.route(event)
    """

    def __init__(
        self,
        store: SessionStore,
        catalog: RepositoryCatalog,
        agent: CodingAgent,
        chat: ConversationClient,
        trigger_phrase: str = "feature request",
        metrics: Optional[WorkflowMetrics] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.agent = agent
        self.chat = chat
        self.trigger_phrase = trigger_phrase.strip().lower()
        self.metrics = metrics

        self._inbound: Dict[WorkflowState, InboundHandler] = {
            WorkflowState.SELECTING_REPO: self._on_repo_selection,
            WorkflowState.AWAITING_REQUEST: self._on_feature_request,
            WorkflowState.IMPLEMENTING: self._on_busy,
            WorkflowState.AWAITING_APPROVAL: self._on_plan_response,
            WorkflowState.REVISING: self._on_busy,
            WorkflowState.FINALIZING: self._on_busy,
            WorkflowState.MONITORING_PR: self._on_monitoring,
        }

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------
    def handles_thread(self, thread_id: str) -> bool:
        return thread_id in self.store

    def is_trigger(self, event: ConversationEvent) -> bool:
        return event.is_mention and event.text.strip().lower().startswith(
            self.trigger_phrase
        )

    async def route(self, event: ConversationEvent) -> bool:
        """Send an inbound event to the workflow if it concerns one.

        Returns:
            True if the event was handled.
        """
        if self.handles_thread(event.thread_id):
            await self.handle_message(event)
            return True
        if self.is_trigger(event):
            await self.start(event)
            return True
        return False

    async def start(self, event: ConversationEvent) -> WorkflowSession:
        """Open a new session for the event's thread and ask for a repository."""
        username = await self._lookup_username(event.user_id)

        session = WorkflowSession(
            thread_id=event.thread_id,
            state=WorkflowState.SELECTING_REPO,
            user_id=event.user_id,
            username=username,
            channel_id=event.channel_id,
        )
        self.store.upsert(session)
        self._refresh_gauge()

        logger.info(
            "Feature request started",
            extra={"thread_id": session.thread_id, "user_id": session.user_id},
        )

        await self._reply(
            session,
            "Sure, I can help with that. Please select a repository from the "
            f"following list:\n{self.catalog.format_choices()}",
        )
        return session

    async def handle_message(self, event: ConversationEvent) -> None:
        """Handle a message posted in a thread with an active session."""
        session = self.store.get(event.thread_id)
        if session is None:
            return

        if session.user_id and event.user_id != session.user_id:
            logger.info(
                "Rejected message from non-initiator",
                extra={"thread_id": session.thread_id, "user_id": event.user_id},
            )
            await self._reply(
                session,
                "Sorry, only the user who initiated this request "
                f"(<@{session.user_id}>) can interact with this workflow.",
            )
            return

        text = event.text.strip()
        if not text:
            return

        handler = self._inbound[session.state]
        await handler(session, event, text)

    async def restore(self) -> int:
        """Rehydrate open sessions from the durable store.

        Sessions that were persisted in a busy state lost their agent run
        with the previous process; they are moved back to where the user
        can retry.

        Returns:
            Number of sessions restored.
        """
        count = await self.store.reload_active()

        for session in list(self.store):
            if not is_busy_state(session.state):
                continue
            self._transition(session, WorkflowEvent.INTERRUPTED)
            await self._persist(session)
            await self._reply(
                session,
                "I was restarted while working on this request, so the last "
                f"step did not finish. {self._retry_hint(session)}",
            )

        self._refresh_gauge()
        return count

    async def resolve_pull_request(
        self,
        session: WorkflowSession,
        pr_state: PullRequestState,
    ) -> bool:
        """Close out a monitored session once its pull request is final.

        Returns:
            True if the session reached COMPLETED.
        """
        if session.state != WorkflowState.MONITORING_PR or not pr_state.is_final:
            return False

        self._transition(session, WorkflowEvent.PR_RESOLVED)
        await self._finish(session)

        if pr_state == PullRequestState.MERGED:
            message = (
                "Good news! Your pull request has been *MERGED*!\n"
                f"URL: {session.pr_url}"
            )
        else:
            message = (
                "Your pull request has been *CLOSED* without merging.\n"
                f"URL: {session.pr_url}"
            )
        await self._reply(session, message)
        return True

    # -------------------------------------------------------------------------
    # Inbound handlers, one per state
    # -------------------------------------------------------------------------
    async def _on_repo_selection(
        self, session: WorkflowSession, event: ConversationEvent, text: str
    ) -> None:
        if self._is_command(text, ABORT_COMMAND):
            await self._abort(session, create_record=True)
            return

        repository = self.catalog.resolve(text)
        if repository is None:
            await self._reply(
                session,
                "I don't recognize that repository. Please select one of the "
                f"following:\n{self.catalog.format_choices()}",
            )
            return

        if not repository.exists():
            logger.error(
                "Configured repository path does not exist",
                extra={
                    "thread_id": session.thread_id,
                    "repo_name": repository.name,
                    "repo_path": repository.path,
                },
            )
            self.store.remove(session.thread_id)
            self._refresh_gauge()
            await self._reply(
                session,
                f"Error: the configured path for `{repository.name}` does not "
                f"exist on the server: `{repository.path}`. Please contact the "
                "administrator.",
            )
            return

        session.repo_name = repository.name
        session.repo_path = repository.path
        self._transition(session, WorkflowEvent.REPO_SELECTED)
        await self.store.register(session.to_record())

        await self._reply(
            session,
            f"Selected repository: `{repository.name}`. What is your feature request?",
        )

    async def _on_feature_request(
        self, session: WorkflowSession, event: ConversationEvent, text: str
    ) -> None:
        if self._is_command(text, ABORT_COMMAND):
            await self._abort(session)
            return

        session.request_text = text
        self._transition(session, WorkflowEvent.REQUEST_SUBMITTED)
        await self.store.register(session.to_record())

        await self._reply(
            session,
            "Acknowledged. Drafting an implementation plan... (this may take a while)",
        )

        output = await self._run_agent(session, build_plan_prompt(text))
        if output is None:
            return
        await self._plan_ready(session, output)

    async def _on_plan_response(
        self, session: WorkflowSession, event: ConversationEvent, text: str
    ) -> None:
        if self._is_command(text, APPROVE_COMMAND):
            await self._approve(session, event)
        elif self._is_command(text, ABORT_COMMAND):
            await self._abort(session)
        else:
            await self._revise(session, text)

    async def _on_busy(
        self, session: WorkflowSession, event: ConversationEvent, text: str
    ) -> None:
        await self._reply(session, "I'm currently running a command, please wait...")

    async def _on_monitoring(
        self, session: WorkflowSession, event: ConversationEvent, text: str
    ) -> None:
        await self._reply(
            session,
            f"I'm currently monitoring your pull request: {session.pr_url}. "
            "I'll notify you here once it's merged or closed.",
        )

    # -------------------------------------------------------------------------
    # Plan approval paths
    # -------------------------------------------------------------------------
    async def _approve(self, session: WorkflowSession, event: ConversationEvent) -> None:
        if session.user_id and event.user_id != session.user_id:
            await self._reply(
                session,
                f"Sorry, only the initiator (<@{session.user_id}>) can approve this request.",
            )
            return

        self._transition(session, WorkflowEvent.APPROVE)
        await self._persist(session)
        await self._reply(
            session,
            "Approved. Implementing the plan and opening a pull request... "
            "(this may take a while)",
        )

        plan_text = session.plan_text or "No previous output captured."
        output = await self._run_agent(session, build_implementation_prompt(plan_text))
        if output is None:
            return
        await self._implementation_done(session, output)

    async def _revise(self, session: WorkflowSession, feedback: str) -> None:
        self._transition(session, WorkflowEvent.FEEDBACK)
        await self._persist(session)
        await self._reply(
            session,
            "Acknowledged. Revising the implementation plan based on your "
            "feedback... (this may take a while)",
        )

        prompt = build_revision_prompt(
            session.request_text or "",
            session.plan_text or "",
            feedback,
        )
        output = await self._run_agent(session, prompt)
        if output is None:
            return
        await self._plan_ready(session, output, revised=True)

    async def _abort(self, session: WorkflowSession, create_record: bool = False) -> None:
        self._transition(session, WorkflowEvent.ABORT)
        if create_record:
            # Nothing is durable before a repository is chosen
            await self.store.register(session.to_record())
        await self._finish(session)
        await self._reply(session, "Feature request workflow has been aborted.")

    # -------------------------------------------------------------------------
    # Agent run completion
    # -------------------------------------------------------------------------
    async def _plan_ready(
        self,
        session: WorkflowSession,
        output: str,
        revised: bool = False,
    ) -> None:
        parsed = split_agent_output(output, FINAL_PLAN_DELIMITER)
        session.plan_text = parsed.result

        self._transition(session, WorkflowEvent.PLAN_READY)
        await self._persist(
            session,
            plan_thoughts=parsed.thoughts,
            final_plan=parsed.result,
        )

        heading = "Revised implementation plan:" if revised else "Implementation plan ready:"
        await self._reply(
            session,
            f"{heading}\n```{parsed.result}```\n\n"
            'Reply with "approve" to implement it and open a pull request, '
            '"abort" to cancel the request, or any feedback to revise the plan.',
        )

    async def _implementation_done(self, session: WorkflowSession, output: str) -> None:
        parsed = split_agent_output(output, FINAL_SUMMARY_DELIMITER)
        pr_url = extract_pull_request_url(parsed.result)

        if pr_url is None:
            self._transition(session, WorkflowEvent.NO_PR)
            await self._finish(
                session,
                implementation_thoughts=parsed.thoughts,
                final_summary=parsed.result,
            )
            await self._reply(
                session,
                f"Workflow complete. Output:\n```{parsed.result}```\n\n"
                "This workflow is now closed.",
            )
            return

        session.pr_url = pr_url
        self._transition(session, WorkflowEvent.PR_OPENED)
        await self._persist(
            session,
            implementation_thoughts=parsed.thoughts,
            final_summary=parsed.result,
            pr_url=pr_url,
        )
        await self._reply(
            session,
            f"Implementation complete. I've detected a pull request: {pr_url}\n\n"
            "I will monitor it and notify you here when it is merged or closed.",
        )

    async def _run_agent(self, session: WorkflowSession, prompt: str) -> Optional[str]:
        """Run the coding agent for the session's current busy state.

        A non-zero exit is reported in the thread and the captured output
        is still returned for parsing.

        Returns:
            Combined agent output, or None if the agent could not be
            launched (the session has then been moved back for a retry).
        """
        stage = session.state

        try:
            result = await self.agent.run(prompt, cwd=session.repo_path)
        except ProcessDispatchError as exc:
            if self.metrics is not None:
                self.metrics.record_agent_run(stage, "dispatch_error")
            self._transition(session, WorkflowEvent.INTERRUPTED)
            await self._persist(session)
            await self._reply(
                session,
                f"Failed to start the coding agent: {exc.original_error}\n"
                f"{self._retry_hint(session)}",
            )
            return None

        if self.metrics is not None:
            self.metrics.record_agent_run(
                stage,
                "success" if result.success else "failure",
                result.duration_seconds,
            )

        output = result.combined_output
        if not result.success:
            await self._reply(
                session,
                f"Command failed with exit code {result.exit_code}.\n"
                f"Output:\n```{output}```",
            )
        return output

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    def _transition(self, session: WorkflowSession, event: WorkflowEvent) -> WorkflowState:
        from_state = session.state
        to_state = next_state(from_state, event)
        session.state = to_state

        logger.info(
            "Workflow transition",
            extra={
                "thread_id": session.thread_id,
                "workflow_event": event.value,
                "from_state": from_state.value,
                "to_state": to_state.value,
            },
        )
        if self.metrics is not None:
            self.metrics.record_transition(from_state, to_state)
        return to_state

    async def _persist(self, session: WorkflowSession, **fields) -> None:
        await self.store.persist(session.thread_id, state=session.state, **fields)
        self._refresh_gauge()

    async def _finish(self, session: WorkflowSession, **fields) -> None:
        """Persist a terminal state and drop the session from memory."""
        if not is_terminal_state(session.state):
            raise ValueError(f"{session.state.value} is not a terminal state")
        await self.store.persist(session.thread_id, state=session.state, **fields)
        self.store.remove(session.thread_id)
        self._refresh_gauge()

        logger.info(
            "Feature request finished",
            extra={"thread_id": session.thread_id, "state": session.state.value},
        )

    async def _reply(self, session: WorkflowSession, text: str) -> None:
        try:
            await self.chat.post_message(session.channel_id, session.thread_id, text)
        except ConversationError:
            logger.exception(
                "Failed to post reply",
                extra={"thread_id": session.thread_id},
            )

    async def _lookup_username(self, user_id: str) -> str:
        try:
            return await self.chat.get_username(user_id) or "unknown"
        except ConversationError:
            logger.warning("User lookup failed", extra={"user_id": user_id})
            return "unknown"

    def _retry_hint(self, session: WorkflowSession) -> str:
        if session.state == WorkflowState.AWAITING_REQUEST:
            return "Please send your feature request again to retry."
        return (
            'Reply with "approve" to retry the implementation, "abort" to '
            "cancel, or any feedback to revise the plan."
        )

    def _refresh_gauge(self) -> None:
        if self.metrics is not None:
            self.metrics.update_active_sessions(self.store)

    @staticmethod
    def _is_command(text: str, command: str) -> bool:
        return text.strip().lower() == command
