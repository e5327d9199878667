"""In-memory session map backed by the persistence gateway.

The SessionStore is the only place where the in-memory view and the
durable view of a workflow meet. Transition handlers mutate sessions and
call persist(); the store writes through to the gateway and keeps going on
in-memory state alone when the database is unavailable.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional

from src.featureflow.state.gateway import (
    DatabaseError,
    DuplicateRecordError,
    PersistenceGateway,
)
from src.featureflow.workflow.models import (
    FeatureRequestRecord,
    WorkflowSession,
    WorkflowState,
    is_terminal_state,
)


logger = logging.getLogger(__name__)


class SessionStore:
    """Active workflow sessions keyed by thread id.

    Invariant: a session is held here iff its state is not terminal.

    Attributes:
        gateway: Durable store the sessions are mirrored to.
    """

    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway
        self._sessions: Dict[str, WorkflowSession] = {}

    def __contains__(self, thread_id: str) -> bool:
        return thread_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[WorkflowSession]:
        return iter(list(self._sessions.values()))

    def get(self, thread_id: str) -> Optional[WorkflowSession]:
        return self._sessions.get(thread_id)

    def upsert(self, session: WorkflowSession) -> None:
        """Hold ``session`` in memory, replacing any previous one.

        Raises:
            ValueError: If the session is already terminal.
        """
        if is_terminal_state(session.state):
            raise ValueError(
                f"Terminal session {session.thread_id} cannot be held in memory"
            )
        self._sessions[session.thread_id] = session

    def remove(self, thread_id: str) -> Optional[WorkflowSession]:
        return self._sessions.pop(thread_id, None)

    def in_state(self, state: WorkflowState) -> List[WorkflowSession]:
        """Snapshot of the sessions currently in ``state``."""
        return [s for s in self._sessions.values() if s.state == state]

    async def reload_active(self) -> int:
        """Repopulate memory from every open durable record.

        Returns:
            Number of sessions loaded; 0 when the gateway is unavailable.
        """
        try:
            records = await self.gateway.list_open()
        except DatabaseError:
            logger.exception("Failed to load active feature request sessions")
            return 0

        for record in records:
            session = WorkflowSession.from_record(record)
            self._sessions[session.thread_id] = session

        logger.info(
            "Loaded active feature request sessions",
            extra={"count": len(records)},
        )
        return len(records)

    async def register(self, record: FeatureRequestRecord) -> None:
        """Create the durable record for a thread.

        When the thread already has a record its writable fields are
        updated instead. Database failures are logged, never raised.
        """
        try:
            await self.gateway.create(record)
            return
        except DuplicateRecordError:
            logger.info(
                "Feature request record exists, updating",
                extra={"thread_id": record.thread_id},
            )
        except DatabaseError:
            logger.exception(
                "Failed to create feature request record",
                extra={"thread_id": record.thread_id},
            )
            return

        fields = record.model_dump(
            exclude={"thread_id", "created_at", "last_updated"},
            exclude_none=True,
        )
        await self.persist(record.thread_id, **fields)

    async def persist(self, thread_id: str, **fields: Any) -> bool:
        """Write ``fields`` to the thread's durable record.

        Returns:
            True if the write succeeded (or there was nothing to write).
        """
        try:
            await self.gateway.update(thread_id, fields)
            return True
        except DatabaseError:
            logger.exception(
                "Failed to persist feature request fields",
                extra={"thread_id": thread_id, "fields": sorted(fields)},
            )
            return False
