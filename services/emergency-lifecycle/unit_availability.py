"""Unit availability maintenance: busy/available flag and current assignment."""
import logging
from datetime import datetime
from typing import Callable, Optional

from shared.errors import Forbidden, RecordNotFound
from shared.types import Actor, ActorRole, TransportUnit, UnitAvailability
from repository import EmergencyRepository, retry_on_conflict

logger = logging.getLogger(__name__)


class UnitAvailabilityMaintainer:
    """Keeps each unit's dispatch fields in step with its assignment.

    occupy/release are side effects of record transitions: a unit that does
    not resolve is logged and skipped, never fatal to the caller.
    """

    def __init__(self, repository: EmergencyRepository, clock: Callable[[], datetime]):
        self.repository = repository
        self.clock = clock

    def occupy(self, unit_id: str, record_id: str) -> bool:
        def apply() -> bool:
            loaded = self.repository.get_unit(unit_id)
            if loaded is None:
                logger.warning(f"Unit {unit_id} not found while assigning {record_id}")
                return False
            unit, version = loaded
            if unit.current_assignment and unit.current_assignment != record_id:
                logger.warning(
                    f"Unit {unit_id} reassigned from {unit.current_assignment} to {record_id}"
                )
            unit.availability = UnitAvailability.BUSY
            unit.current_assignment = record_id
            self.repository.save_unit(unit, version)
            return True

        return retry_on_conflict(apply, f"occupy unit {unit_id}")

    def release(self, unit_id: Optional[str], record_id: Optional[str] = None) -> bool:
        """Mark a unit available again.

        When ``record_id`` is given, a unit already pointing at a different
        record is left alone.
        """
        if not unit_id:
            return True

        def apply() -> bool:
            loaded = self.repository.get_unit(unit_id)
            if loaded is None:
                logger.warning(f"Unit {unit_id} not found on release; availability not updated")
                return False
            unit, version = loaded
            if record_id and unit.current_assignment not in (None, record_id):
                logger.warning(
                    f"Unit {unit_id} now serves {unit.current_assignment}; not releasing for {record_id}"
                )
                return False
            if unit.availability == UnitAvailability.AVAILABLE and unit.current_assignment is None:
                return True
            unit.availability = UnitAvailability.AVAILABLE
            unit.current_assignment = None
            self.repository.save_unit(unit, version)
            logger.info(f"Unit {unit_id} released")
            return True

        return retry_on_conflict(apply, f"release unit {unit_id}")

    def update_location(self, unit_id: str, actor: Actor, latitude: float, longitude: float) -> TransportUnit:
        """Record a unit's last known position. Only the unit itself may report it."""
        if actor.role != ActorRole.UNIT or actor.actor_id != unit_id:
            raise Forbidden("Only the unit itself can report its location")
        loaded = self.repository.get_unit(unit_id)
        if loaded is None:
            raise RecordNotFound(f"Unit {unit_id} not found")
        unit, version = loaded
        unit.latitude = latitude
        unit.longitude = longitude
        unit.last_location_update = self.clock()
        self.repository.save_unit(unit, version)
        return unit
