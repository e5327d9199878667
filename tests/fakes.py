"""Shared test doubles for the feature request workflow tests."""

import asyncio
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from src.featureflow.chat.models import ConversationEvent
from src.featureflow.chat.slack import ConversationError
from src.featureflow.runner.process import ProcessDispatchError, ProcessResult
from src.featureflow.state.gateway import DatabaseError, DuplicateRecordError
from src.featureflow.workflow.models import TERMINAL_STATES, FeatureRequestRecord


def run_async(coro):
    return asyncio.run(coro)


# =============================================================================
# In-Memory Persistence Gateway
# =============================================================================


class InMemoryPersistenceGateway:
    """In-memory implementation of PersistenceGateway for testing.

    Records every update call so tests can check write ordering, and can
    be switched into a failing mode to simulate an unreachable database.
    """

    def __init__(self) -> None:
        self.records: Dict[str, FeatureRequestRecord] = {}
        self.updates: List[Tuple[str, Dict[str, Any]]] = []
        self.fail = False

    async def create(self, record: FeatureRequestRecord) -> None:
        if self.fail:
            raise DatabaseError("database unavailable")
        if record.thread_id in self.records:
            raise DuplicateRecordError(record.thread_id)
        self.records[record.thread_id] = record.model_copy()

    async def update(self, thread_id: str, fields: Mapping[str, Any]) -> None:
        if self.fail:
            raise DatabaseError("database unavailable")
        if not fields:
            return
        self.updates.append((thread_id, dict(fields)))
        existing = self.records.get(thread_id)
        if existing is None:
            return
        self.records[thread_id] = existing.model_copy(update=dict(fields))

    async def list_open(self) -> List[FeatureRequestRecord]:
        if self.fail:
            raise DatabaseError("database unavailable")
        return [
            record
            for record in self.records.values()
            if record.state is None or record.state not in TERMINAL_STATES
        ]


# =============================================================================
# Recording Conversation Client
# =============================================================================


class RecordingConversationClient:
    """ConversationClient that keeps every posted message in a list."""

    def __init__(self, usernames: Optional[Dict[str, str]] = None) -> None:
        self.messages: List[Tuple[str, str, str]] = []
        self.usernames = usernames or {}
        self.fail_posts = False

    async def post_message(self, channel_id: str, thread_id: str, text: str) -> None:
        if self.fail_posts:
            raise ConversationError("channel_not_found", error_code="channel_not_found")
        self.messages.append((channel_id, thread_id, text))

    async def get_username(self, user_id: str) -> Optional[str]:
        return self.usernames.get(user_id)

    def texts(self, thread_id: Optional[str] = None) -> List[str]:
        return [
            text
            for _, thread, text in self.messages
            if thread_id is None or thread == thread_id
        ]


# =============================================================================
# Scripted Coding Agent
# =============================================================================


AgentStep = Union[str, ProcessResult, Exception]


def make_process_result(
    stdout: str = "",
    stderr: str = "",
    exit_code: int = 0,
    command: str = "gemini",
) -> ProcessResult:
    return ProcessResult(
        command=command,
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        duration_seconds=1.5,
    )


class ScriptedAgent:
    """Stand-in for CodingAgent that replays queued results.

    A queued string becomes a successful run printing that string; a
    queued exception is raised from run().
    """

    def __init__(self, *steps: AgentStep) -> None:
        self.steps: List[AgentStep] = list(steps)
        self.calls: List[Tuple[str, Optional[str]]] = []

    def queue(self, *steps: AgentStep) -> None:
        self.steps.extend(steps)

    async def run(self, prompt: str, cwd: str) -> ProcessResult:
        self.calls.append((prompt, cwd))
        if not self.steps:
            raise AssertionError("ScriptedAgent ran out of queued results")
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        if isinstance(step, ProcessResult):
            return step
        return make_process_result(stdout=step)


def dispatch_error(command: str = "gemini") -> ProcessDispatchError:
    return ProcessDispatchError(
        command, FileNotFoundError(2, "No such file or directory", command)
    )


# =============================================================================
# Event Factory
# =============================================================================


THREAD_ID = "1700000000.000100"
CHANNEL_ID = "C0123CHAN"
INITIATOR_ID = "U0INITIATOR"
OTHER_USER_ID = "U0SOMEONE"


def make_event(
    text: str,
    user_id: str = INITIATOR_ID,
    thread_ts: Optional[str] = THREAD_ID,
    ts: str = "1700000001.000200",
    channel_id: str = CHANNEL_ID,
    is_mention: bool = False,
) -> ConversationEvent:
    return ConversationEvent(
        user_id=user_id,
        channel_id=channel_id,
        ts=ts,
        thread_ts=thread_ts,
        text=text,
        is_mention=is_mention,
    )


def make_trigger(text: str = "feature request", user_id: str = INITIATOR_ID) -> ConversationEvent:
    """Top-level mention that opens a thread rooted at THREAD_ID."""
    return make_event(text, user_id=user_id, thread_ts=None, ts=THREAD_ID, is_mention=True)
