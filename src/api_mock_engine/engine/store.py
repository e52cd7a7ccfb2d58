"""Resource Store: keyed mock state with collection semantics.

The in-memory map is authoritative for the running process. Every mutation
schedules a background save of a full snapshot through the storage hook;
saves are serialized so the newest snapshot always lands last.
"""

import asyncio
import copy
import logging
import re

from api_mock_engine.errors import StorageFailure

from .storage import StorageBackend

logger = logging.getLogger(__name__)

UUID_SEGMENT = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
NUMERIC_SEGMENT = re.compile(r"^\d+$")


def is_identifier_segment(segment: str) -> bool:
    return bool(NUMERIC_SEGMENT.match(segment) or UUID_SEGMENT.match(segment))


def collection_key(path: str, template_has_id: bool = False) -> str:
    """Strip a trailing resource identifier: ``/pets/42`` -> ``/pets``."""
    path = "/" + path.strip("/")
    head, _, last = path.rpartition("/")
    if last and (template_has_id or is_identifier_segment(last)):
        return head or "/"
    return path


def same_id(record, identifier) -> bool:
    return isinstance(record, dict) and "id" in record and str(record["id"]) == str(identifier)


class ResourceStore:
    """Keyed map of stored resources and collections."""

    def __init__(self, storage: StorageBackend | None = None, data: dict | None = None):
        self.storage = storage
        self.degraded = False
        self._data: dict = copy.deepcopy(data or {})
        self._locks: dict[str, asyncio.Lock] = {}
        self._tombstones: set[str] = set()
        self._pending: set[asyncio.Task] = set()
        self._save_lock: asyncio.Lock | None = None

    @classmethod
    def open(cls, storage: StorageBackend) -> "ResourceStore":
        """Build a store from whatever the storage hook already holds."""
        try:
            data = storage.load()
        except StorageFailure as e:
            logger.warning("Starting with empty state, load failed: %s", e)
            store = cls(storage)
            store.degraded = True
            return store
        logger.info("Loaded %d stored keys", len(data))
        return cls(storage, data)

    # -- reads ----------------------------------------------------------------

    def get(self, key: str):
        return copy.deepcopy(self._data.get(key))

    def has(self, key: str) -> bool:
        return key in self._data

    def get_collection(self, key: str) -> list | None:
        if key not in self._data:
            return None
        value = self._data[key]
        return copy.deepcopy(value if isinstance(value, list) else [value])

    def is_deleted(self, key: str) -> bool:
        return key in self._tombstones

    def keys(self) -> list[str]:
        return list(self._data)

    def snapshot(self) -> dict:
        return copy.deepcopy(self._data)

    def lock(self, key: str) -> asyncio.Lock:
        """Per-key lock; hold it across a read-modify-write on ``key``."""
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    # -- writes ---------------------------------------------------------------

    async def set(self, key: str, value) -> None:
        value = copy.deepcopy(value)
        self._data[key] = value
        self._tombstones.discard(key)
        self._schedule_save()

    async def delete(self, key: str) -> bool:
        if key not in self._data:
            return False
        del self._data[key]
        self._tombstones.add(key)
        self._schedule_save()
        return True

    async def append_to_collection(self, key: str, value) -> None:
        value = copy.deepcopy(value)
        current = self._data.get(key)
        if current is None:
            collection = []
        elif isinstance(current, list):
            collection = current
        else:
            collection = [current]
        collection.append(value)
        self._data[key] = collection
        self._tombstones.discard(key)
        self._schedule_save()

    async def remove_from_collection(self, key: str, identifier) -> bool:
        current = self._data.get(key)
        if not isinstance(current, list):
            return False
        kept = [item for item in current if not same_id(item, identifier)]
        if len(kept) == len(current):
            return False
        self._data[key] = kept
        self._schedule_save()
        return True

    async def replace_in_collection(self, key: str, identifier, value) -> bool:
        current = self._data.get(key)
        if not isinstance(current, list):
            return False
        for index, item in enumerate(current):
            if same_id(item, identifier):
                current[index] = copy.deepcopy(value)
                self._schedule_save()
                return True
        return False

    async def clear(self) -> None:
        self._data.clear()
        self._tombstones.clear()
        self._schedule_save()

    async def flush(self) -> None:
        """Wait for every scheduled save to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # -- durability -----------------------------------------------------------

    def _schedule_save(self) -> None:
        if self.storage is None:
            return
        snapshot = copy.deepcopy(self._data)
        task = asyncio.get_running_loop().create_task(self._save(snapshot))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _save(self, snapshot: dict) -> None:
        if self._save_lock is None:
            self._save_lock = asyncio.Lock()
        async with self._save_lock:
            try:
                await asyncio.to_thread(self.storage.save, snapshot)
            except StorageFailure as e:
                if not self.degraded:
                    logger.warning("Durable save failed, continuing in memory only: %s", e)
                self.degraded = True
                return
        if self.degraded:
            logger.info("Durable storage restored")
            self.degraded = False
