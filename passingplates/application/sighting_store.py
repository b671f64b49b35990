"""
Sighting history.

Aggregates Detections into one SightingRecord per plate and persists the
whole list as a JSON snapshot in a key/value store. Listeners receive a
fresh copy of the records on every change.
"""

import asyncio
import json
from collections.abc import Callable, Iterable

from passingplates.core.logging import get_logger
from passingplates.domain.models import Detection, SightingRecord, SightingStats
from passingplates.infrastructure.db.repository import KeyValueStore

logger = get_logger(__name__)

STORAGE_KEY = "passingplates.records.v1"

SightingListener = Callable[[list[SightingRecord], SightingStats], None]


def compute_stats(records: list[SightingRecord]) -> SightingStats:
    """
    Summarize a record list.

    The most seen plate is the first record with the strictly highest
    count; the recent plate has the latest `last_seen`.
    """
    if not records:
        return SightingStats()

    most_seen = records[0]
    for record in records[1:]:
        if record.count > most_seen.count:
            most_seen = record
    recent = max(records, key=lambda r: r.last_seen)
    return SightingStats(
        unique_plates=len(records),
        total_sightings=sum(r.count for r in records),
        most_seen_plate=most_seen,
        recent_plate=recent,
    )


class SightingStore:
    """
    In-memory sighting list backed by a key/value snapshot.

    Call `load()` once before use to restore the persisted history.

    Example:
        store = SightingStore(SqlKeyValueStore(session_factory))
        await store.load()
        await store.add_detection(detection)
    """

    def __init__(self, kv: KeyValueStore, storage_key: str = STORAGE_KEY):
        """
        Initialize store.

        Args:
            kv: Persistence backend.
            storage_key: Key holding the JSON snapshot.
        """
        self._kv = kv
        self._storage_key = storage_key
        self._records: list[SightingRecord] = []
        self._listeners: list[SightingListener] = []
        self._persist_lock = asyncio.Lock()

    async def load(self) -> list[SightingRecord]:
        """
        Restore records from the persisted snapshot.

        A missing, corrupt or non-list snapshot starts an empty history.
        """
        try:
            raw = await self._kv.get(self._storage_key)
        except Exception as e:
            logger.warning("sighting_history_load_failed", error=str(e))
            raw = None

        records: list[SightingRecord] = []
        if raw:
            try:
                parsed = json.loads(raw)
            except ValueError as e:
                logger.warning("sighting_history_corrupt", error=str(e))
                parsed = []
            if isinstance(parsed, list):
                records = [
                    SightingRecord.from_dict(item) for item in parsed if isinstance(item, dict)
                ]

        records.sort(key=lambda r: r.last_seen, reverse=True)
        self._records = records
        logger.info("sighting_history_loaded", records=len(records))
        return self.get_records()

    async def _persist(self) -> None:
        # Snapshot and write under one lock so writes land in call order.
        async with self._persist_lock:
            snapshot = json.dumps([record.to_dict() for record in self._records])
            try:
                await self._kv.set(self._storage_key, snapshot)
            except Exception as e:
                logger.warning("sighting_history_persist_failed", error=str(e))

    def _notify(self) -> None:
        for listener in list(self._listeners):
            records = self.get_records()
            try:
                listener(records, compute_stats(records))
            except Exception as e:
                logger.error("sighting_listener_failed", error=str(e))

    def _apply(self, detection: Detection) -> None:
        for record in self._records:
            if record.plate == detection.plate:
                record.count += 1
                record.last_seen = detection.captured_at
                record.last_confidence = detection.confidence
                record.last_source = detection.source
                record.formatted_plate = detection.formatted_plate
                break
        else:
            self._records.append(
                SightingRecord(
                    plate=detection.plate,
                    formatted_plate=detection.formatted_plate,
                    count=1,
                    first_seen=detection.captured_at,
                    last_seen=detection.captured_at,
                    last_confidence=detection.confidence,
                    last_source=detection.source,
                )
            )
        self._records.sort(key=lambda r: r.last_seen, reverse=True)

    async def add_detection(self, detection: Detection | None) -> None:
        """Record one detection, persist and notify listeners."""
        if detection is None:
            return
        self._apply(detection)
        logger.info(
            "plate_sighted",
            plate=detection.plate,
            confidence=detection.confidence,
            source=detection.source.value,
        )
        await self._persist()
        self._notify()

    async def add_detections(self, detections: Iterable[Detection]) -> None:
        """Record a batch of detections with a single persist."""
        batch = [d for d in detections if d is not None]
        if not batch:
            return
        for detection in batch:
            self._apply(detection)
        logger.info("plates_sighted", plates=[d.plate for d in batch])
        await self._persist()
        self._notify()

    async def reset(self) -> None:
        """Clear every record and the persisted snapshot."""
        self._records = []
        async with self._persist_lock:
            try:
                await self._kv.delete(self._storage_key)
            except Exception as e:
                logger.warning("sighting_history_clear_failed", error=str(e))
        logger.info("sighting_history_reset")
        self._notify()

    def subscribe(self, listener: SightingListener) -> Callable[[], None]:
        """
        Register a listener and deliver the current state immediately.

        Returns:
            Callable removing the listener.
        """
        self._listeners.append(listener)
        records = self.get_records()
        listener(records, compute_stats(records))

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get_records(self) -> list[SightingRecord]:
        """Independent copies of the records, most recent first."""
        return [record.copy() for record in self._records]

    def get_stats(self) -> SightingStats:
        """Statistics over a copy of the records."""
        return compute_stats(self.get_records())
