"""Feature request persistence.

Durable records live in a single PostgreSQL table keyed by Slack thread.
The SessionStore keeps the in-memory view of live sessions and writes
changes through to the gateway.
"""

from src.featureflow.state.gateway import (
    DatabaseError,
    DuplicateRecordError,
    PersistenceGateway,
    PostgresPersistenceGateway,
)
from src.featureflow.state.store import SessionStore

__all__ = [
    "DatabaseError",
    "DuplicateRecordError",
    "PersistenceGateway",
    "PostgresPersistenceGateway",
    "SessionStore",
]
