"""Database infrastructure package."""

from passingplates.infrastructure.db.models import Base, KeyValueEntryDB
from passingplates.infrastructure.db.repository import (
    InMemoryKeyValueStore,
    KeyValueStore,
    SqlKeyValueStore,
)
from passingplates.infrastructure.db.session import (
    close_db,
    create_session_factory,
    get_session_factory,
    init_db,
)

__all__ = [
    # Models
    "Base",
    "KeyValueEntryDB",
    # Repositories
    "KeyValueStore",
    "SqlKeyValueStore",
    "InMemoryKeyValueStore",
    # Session
    "create_session_factory",
    "get_session_factory",
    "init_db",
    "close_db",
]
