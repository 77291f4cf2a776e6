"""Assignment: bind a transport unit and a receiving facility to a pending record."""
import logging
import os
from datetime import datetime
from typing import Callable, Optional

from shared.errors import AlreadyAssigned, Forbidden, InvalidRequest
from shared.types import (
    Actor, ActorRole, EmergencyRecord, EmergencyStatus, FacilitySnapshot
)
from repository import EmergencyRepository
from state_machine import enter_status, utcnow
from unit_availability import UnitAvailabilityMaintainer

logger = logging.getLogger(__name__)

# Used when the facility has no coordinates on file.
DEFAULT_FACILITY_LAT = float(os.getenv("DEFAULT_FACILITY_LAT", "40.7829"))
DEFAULT_FACILITY_LNG = float(os.getenv("DEFAULT_FACILITY_LNG", "-73.9654"))
DEFAULT_FACILITY_ADDRESS = "Hospital Address"
DEFAULT_FACILITY_PHONE = "N/A"


class AssignmentCoordinator:
    """Moves a record from pending to assigned and marks the unit busy."""

    def __init__(
        self,
        repository: EmergencyRepository,
        unit_availability: UnitAvailabilityMaintainer,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.unit_availability = unit_availability
        self.clock = clock

    def assign(
        self,
        record_id: str,
        actor: Actor,
        unit_id: Optional[str] = None,
        facility_id: Optional[str] = None,
        estimated_time: Optional[int] = None,
    ) -> EmergencyRecord:
        """Assign a unit and facility to a pending record.

        A unit caller that omits ``unit_id`` assigns itself; a facility caller
        that omits ``facility_id`` names itself.

        Raises:
            Forbidden: caller is neither a unit nor a facility
            InvalidRequest: unit or facility could not be determined
            RecordNotFound: unknown id
            AlreadyAssigned: record is no longer pending
            Conflict: a concurrent writer got there first
        """
        if actor.role not in (ActorRole.UNIT, ActorRole.FACILITY):
            raise Forbidden("Only facilities and units can assign emergencies")

        unit_id = unit_id or (actor.actor_id if actor.role == ActorRole.UNIT else None)
        facility_id = facility_id or (actor.actor_id if actor.role == ActorRole.FACILITY else None)
        if not unit_id or not facility_id:
            raise InvalidRequest("Both a unit and a facility are required")

        record, version = self.repository.get(record_id)
        if record.status != EmergencyStatus.PENDING:
            raise AlreadyAssigned(f"Emergency {record_id} is already {record.status.value}")

        record.unit_id = unit_id
        record.facility_id = facility_id
        record.facility = self.facility_snapshot(facility_id)
        record.estimated_time = estimated_time
        enter_status(record, EmergencyStatus.ASSIGNED, self.clock())
        self.repository.save(record, version)

        logger.info(f"Emergency {record_id} assigned to unit {unit_id} and facility {facility_id}")

        # Degraded mode: the assignment stands even if the unit cannot be updated.
        if not self.unit_availability.occupy(unit_id, record_id):
            logger.warning(f"Unit {unit_id} availability not updated for {record_id}")
        return record

    def facility_snapshot(self, facility_id: str) -> FacilitySnapshot:
        """Copy facility contact and location details for the record."""
        facility = self.repository.get_facility(facility_id)
        if facility is None:
            logger.warning(f"Facility {facility_id} not on file; using default snapshot")
            return FacilitySnapshot(
                id=facility_id,
                name=facility_id,
                address=DEFAULT_FACILITY_ADDRESS,
                phone=DEFAULT_FACILITY_PHONE,
                latitude=DEFAULT_FACILITY_LAT,
                longitude=DEFAULT_FACILITY_LNG,
            )
        return FacilitySnapshot(
            id=facility.id,
            name=facility.name,
            address=facility.address or DEFAULT_FACILITY_ADDRESS,
            phone=facility.phone or DEFAULT_FACILITY_PHONE,
            latitude=facility.latitude if facility.latitude is not None else DEFAULT_FACILITY_LAT,
            longitude=facility.longitude if facility.longitude is not None else DEFAULT_FACILITY_LNG,
        )
