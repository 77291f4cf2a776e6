"""Record store contract and the in-memory backend.

The lifecycle service only relies on per-key atomicity: ``get``, ``put`` and
``scan`` by prefix. ``put`` takes an optional expected version so callers can
do optimistic read-modify-write on a single key. There are no multi-key
transactions.
"""
import json
import os
import threading
from typing import Any, List, NamedTuple, Optional

from shared.errors import Conflict


RECORD_STORE_BACKEND = os.getenv("RECORD_STORE_BACKEND", "redis")


class StoredValue(NamedTuple):
    """A value read from the store together with its version stamp."""
    value: Any
    version: int


class RecordStore:
    """Key-value store contract consumed by the lifecycle service."""

    def get(self, key: str) -> Optional[StoredValue]:
        raise NotImplementedError

    def put(self, key: str, value: Any, expected_version: Optional[int] = None) -> int:
        """Write ``value`` under ``key`` and return the new version.

        ``expected_version`` of None writes unconditionally, 0 requires the key
        to be absent, any other number must match the stored version.
        Raises Conflict on mismatch.
        """
        raise NotImplementedError

    def scan(self, prefix: str) -> List[StoredValue]:
        """Return every value whose key starts with ``prefix``, in insertion order."""
        raise NotImplementedError


class InMemoryRecordStore(RecordStore):
    """Process-local store for development and tests.

    Values are kept serialized so callers never share mutable state with it.
    """

    def __init__(self):
        self._data: dict = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[StoredValue]:
        with self._lock:
            entry = self._data.get(key)
        if entry is None:
            return None
        version, raw = entry
        return StoredValue(json.loads(raw), version)

    def put(self, key: str, value: Any, expected_version: Optional[int] = None) -> int:
        raw = json.dumps(value)
        with self._lock:
            current = self._data[key][0] if key in self._data else 0
            if expected_version is not None and current != expected_version:
                raise Conflict(
                    f"Version mismatch on {key}: expected {expected_version}, found {current}"
                )
            self._data[key] = (current + 1, raw)
            return current + 1

    def scan(self, prefix: str) -> List[StoredValue]:
        with self._lock:
            entries = [
                (version, raw) for key, (version, raw) in self._data.items()
                if key.startswith(prefix)
            ]
        return [StoredValue(json.loads(raw), version) for version, raw in entries]


def create_record_store(backend: Optional[str] = None) -> RecordStore:
    """Create the configured record store backend."""
    backend = backend or RECORD_STORE_BACKEND
    if backend == "memory":
        return InMemoryRecordStore()
    if backend == "redis":
        from shared.redis_client import RedisRecordStore, create_redis_client
        return RedisRecordStore(create_redis_client())
    raise ValueError(f"Unknown record store backend: {backend}")
