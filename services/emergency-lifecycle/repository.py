"""Typed access to emergency records, transport units and facilities.

Every entity lives under its own key; nothing here spans more than one key per
write. Record and unit writes carry the version that was read so concurrent
writers surface as Conflict.
"""
import logging
import os
from typing import Callable, List, Optional, Tuple

from shared.errors import Conflict, RecordNotFound, StoreUnavailable
from shared.record_store import RecordStore
from shared.types import EmergencyRecord, Facility, TransportUnit

logger = logging.getLogger(__name__)

RECORD_PREFIX = "emergency:"
UNIT_PREFIX = "unit:"
FACILITY_PREFIX = "facility:"

SIDE_TABLE_MAX_RETRIES = int(os.getenv("SIDE_TABLE_MAX_RETRIES", "3"))


def unit_key(unit_id: str) -> str:
    return f"{UNIT_PREFIX}{unit_id}"


def facility_key(facility_id: str) -> str:
    return f"{FACILITY_PREFIX}{facility_id}"


def retry_on_conflict(operation: Callable[[], bool], description: str) -> bool:
    """Run a side-table update, retrying on Conflict.

    Side tables are best-effort: exhausting retries or losing the store is
    logged and reported as False, never raised.
    """
    for attempt in range(1, SIDE_TABLE_MAX_RETRIES + 1):
        try:
            return operation()
        except Conflict:
            logger.info(f"Conflict during {description} (attempt {attempt}/{SIDE_TABLE_MAX_RETRIES})")
        except StoreUnavailable as e:
            logger.warning(f"Store unavailable during {description}: {e}")
            return False
    logger.warning(f"Gave up on {description} after {SIDE_TABLE_MAX_RETRIES} attempts")
    return False


class EmergencyRepository:
    """Reads and writes lifecycle entities through a RecordStore."""

    def __init__(self, store: RecordStore):
        self.store = store

    # Emergency records

    def get(self, record_id: str) -> Tuple[EmergencyRecord, int]:
        """Load a record and its version. Raises RecordNotFound."""
        stored = self.store.get(record_id) if record_id.startswith(RECORD_PREFIX) else None
        if stored is None:
            raise RecordNotFound(f"Emergency {record_id} not found")
        return EmergencyRecord.model_validate(stored.value), stored.version

    def create(self, record: EmergencyRecord) -> int:
        return self.store.put(record.id, record.model_dump(mode="json"), expected_version=0)

    def save(self, record: EmergencyRecord, version: int) -> int:
        return self.store.put(record.id, record.model_dump(mode="json"), expected_version=version)

    def scan_records(self) -> List[Tuple[EmergencyRecord, int]]:
        return [
            (EmergencyRecord.model_validate(stored.value), stored.version)
            for stored in self.store.scan(RECORD_PREFIX)
        ]

    def list_records(self) -> List[EmergencyRecord]:
        return [record for record, _ in self.scan_records()]

    # Transport units

    def get_unit(self, unit_id: str) -> Optional[Tuple[TransportUnit, int]]:
        stored = self.store.get(unit_key(unit_id))
        if stored is None:
            return None
        return TransportUnit.model_validate(stored.value), stored.version

    def save_unit(self, unit: TransportUnit, version: Optional[int]) -> int:
        return self.store.put(unit_key(unit.id), unit.model_dump(mode="json"), expected_version=version)

    def scan_units(self) -> List[Tuple[TransportUnit, int]]:
        return [
            (TransportUnit.model_validate(stored.value), stored.version)
            for stored in self.store.scan(UNIT_PREFIX)
        ]

    def register_unit(self, unit: TransportUnit) -> int:
        """Provision a unit. Registration proper belongs to the identity layer."""
        return self.store.put(unit_key(unit.id), unit.model_dump(mode="json"))

    # Facilities

    def get_facility(self, facility_id: str) -> Optional[Facility]:
        stored = self.store.get(facility_key(facility_id))
        return Facility.model_validate(stored.value) if stored else None

    def register_facility(self, facility: Facility) -> int:
        return self.store.put(facility_key(facility.id), facility.model_dump(mode="json"))
