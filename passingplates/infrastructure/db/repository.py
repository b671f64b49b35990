"""
Key/value stores for the sighting snapshot.

The application layer only depends on `KeyValueStore`; the SQL
implementation persists through SQLAlchemy, the in-memory one backs tests
and ephemeral sessions.
"""

from abc import ABC, abstractmethod

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from passingplates.infrastructure.db.models import KeyValueEntryDB


class KeyValueStore(ABC):
    """Minimal string key/value persistence."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key if present."""


class SqlKeyValueStore(KeyValueStore):
    """
    Key/value store on the `key_value_entries` table.

    Every call runs in its own short session.

    Example:
        store = SqlKeyValueStore(get_session_factory())
        await store.set("passingplates.records.v1", "[]")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """
        Initialize store with a session factory.

        Args:
            session_factory: Factory producing async sessions.
        """
        self._session_factory = session_factory

    async def get(self, key: str) -> str | None:
        async with self._session_factory() as session:
            entry = await session.get(KeyValueEntryDB, key)
            return entry.value if entry is not None else None

    async def set(self, key: str, value: str) -> None:
        async with self._session_factory() as session:
            entry = await session.get(KeyValueEntryDB, key)
            if entry is None:
                session.add(KeyValueEntryDB(key=key, value=value))
            else:
                entry.value = value
            await session.commit()

    async def delete(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(KeyValueEntryDB).where(KeyValueEntryDB.key == key))
            await session.commit()


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store; contents are lost on exit."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._values: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)
