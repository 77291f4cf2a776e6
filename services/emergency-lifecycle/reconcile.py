"""Out-of-band repair of the side tables.

Records are the source of truth. The active index and the unit availability
flags are derived from them and may lag after a partial failure; these
functions recompute both from a full scan.
"""
import logging
from typing import Dict, List

from shared.errors import Conflict
from shared.types import EmergencyRecord, UnitAvailability
from active_index import ActiveIndex
from repository import SIDE_TABLE_MAX_RETRIES, EmergencyRepository

logger = logging.getLogger(__name__)


def rebuild_active_index(repository: EmergencyRepository, active_index: ActiveIndex) -> List[str]:
    """Rewrite the active index from record status. Returns the open ids.

    The index version is read before the scan, so an add or remove that lands
    in between turns the write into a Conflict and the scan is repeated.

    Raises:
        Conflict: the index kept changing for SIDE_TABLE_MAX_RETRIES attempts
    """
    for attempt in range(1, SIDE_TABLE_MAX_RETRIES + 1):
        version = active_index.version()
        open_ids = [record.id for record in repository.list_records() if not record.status.is_terminal]
        try:
            active_index.replace(open_ids, expected_version=version)
        except Conflict:
            logger.info(f"Active index changed during rebuild (attempt {attempt}/{SIDE_TABLE_MAX_RETRIES})")
            continue
        return open_ids
    raise Conflict(f"Active index rebuild gave up after {SIDE_TABLE_MAX_RETRIES} attempts")


def reconcile_units(repository: EmergencyRepository) -> Dict[str, List[str]]:
    """Make each unit's availability match the records that name it.

    A unit is busy iff its current assignment is a non-terminal record that
    names it. Units that changed during the pass are skipped.
    """
    records = {record.id: record for record in repository.list_records()}
    open_by_unit: Dict[str, EmergencyRecord] = {}
    for record in records.values():
        if record.unit_id and not record.status.is_terminal:
            latest = open_by_unit.get(record.unit_id)
            if latest is None or (record.assigned_at or record.created_at) > (latest.assigned_at or latest.created_at):
                open_by_unit[record.unit_id] = record

    released, occupied = [], []
    for unit, version in repository.scan_units():
        current = records.get(unit.current_assignment) if unit.current_assignment else None
        current_ok = current is not None and not current.status.is_terminal and current.unit_id == unit.id

        if unit.availability == UnitAvailability.BUSY and current_ok:
            continue
        expected = open_by_unit.get(unit.id)
        if expected is None and unit.availability == UnitAvailability.AVAILABLE and unit.current_assignment is None:
            continue

        if expected is None:
            unit.availability = UnitAvailability.AVAILABLE
            unit.current_assignment = None
        else:
            unit.availability = UnitAvailability.BUSY
            unit.current_assignment = expected.id
        try:
            repository.save_unit(unit, version)
        except Conflict:
            logger.info(f"Unit {unit.id} changed during reconciliation; skipped")
            continue

        if expected is None:
            released.append(unit.id)
            logger.warning(f"Reconciliation released unit {unit.id}")
        else:
            occupied.append(unit.id)
            logger.warning(f"Reconciliation marked unit {unit.id} busy with {expected.id}")

    return {"released": released, "occupied": occupied}
