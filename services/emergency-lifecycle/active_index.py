"""Active-emergency index: ordered list of non-terminal record ids."""
import logging
from typing import List

from shared.record_store import RecordStore
from repository import retry_on_conflict

logger = logging.getLogger(__name__)

ACTIVE_INDEX_KEY = "emergencies:active"


class ActiveIndex:
    """Side list of open record ids kept under a single key.

    Holds identifiers only; the records stay authoritative and the list can
    be rebuilt from a full scan. ``add`` and ``remove`` are idempotent.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def ids(self) -> List[str]:
        stored = self.store.get(ACTIVE_INDEX_KEY)
        return list(stored.value) if stored else []

    def add(self, record_id: str) -> bool:
        return retry_on_conflict(
            lambda: self._apply(lambda ids: ids if record_id in ids else ids + [record_id]),
            f"active index add {record_id}",
        )

    def remove(self, record_id: str) -> bool:
        return retry_on_conflict(
            lambda: self._apply(lambda ids: [i for i in ids if i != record_id]),
            f"active index remove {record_id}",
        )

    def version(self) -> int:
        """Current version of the index key, 0 when it does not exist yet."""
        stored = self.store.get(ACTIVE_INDEX_KEY)
        return stored.version if stored else 0

    def replace(self, record_ids: List[str], expected_version: int) -> None:
        """Overwrite the index, used by the rebuild path.

        Raises Conflict if the index changed since ``expected_version`` was read.
        """
        self.store.put(ACTIVE_INDEX_KEY, list(record_ids), expected_version=expected_version)
        logger.info(f"Active index rebuilt with {len(record_ids)} entries")

    def _apply(self, mutate) -> bool:
        stored = self.store.get(ACTIVE_INDEX_KEY)
        current = list(stored.value) if stored else []
        updated = mutate(current)
        if updated == current:
            return True
        self.store.put(ACTIVE_INDEX_KEY, updated, expected_version=stored.version if stored else 0)
        return True
