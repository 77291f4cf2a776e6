"""Emergency lifecycle state machine.

pending -> assigned -> enroute -> arrived_at_scene -> patient_loaded
  -> enroute_to_hospital -> arrived_at_hospital -> completed
with cancelled reachable from any non-terminal status.

The unit drives the four physical-progress transitions. Assignment and the
two gate exits belong to assignment.py and confirmation.py; they all go
through enter_status() so timestamps and the awaiting flag stay consistent.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from shared.errors import Forbidden, InvalidTransition
from shared.types import Actor, ActorRole, EmergencyRecord, EmergencyStatus
from active_index import ActiveIndex
from repository import EmergencyRepository
from unit_availability import UnitAvailabilityMaintainer

logger = logging.getLogger(__name__)


GATE_STATUSES = frozenset({
    EmergencyStatus.ARRIVED_AT_SCENE,
    EmergencyStatus.ARRIVED_AT_HOSPITAL,
})

# Transitions a unit may trigger directly.
UNIT_TRANSITIONS = {
    EmergencyStatus.ASSIGNED: EmergencyStatus.ENROUTE,
    EmergencyStatus.ENROUTE: EmergencyStatus.ARRIVED_AT_SCENE,
    EmergencyStatus.PATIENT_LOADED: EmergencyStatus.ENROUTE_TO_HOSPITAL,
    EmergencyStatus.ENROUTE_TO_HOSPITAL: EmergencyStatus.ARRIVED_AT_HOSPITAL,
}

# Full forward graph, including gate exits.
SUCCESSORS = {
    EmergencyStatus.PENDING: EmergencyStatus.ASSIGNED,
    EmergencyStatus.ARRIVED_AT_SCENE: EmergencyStatus.PATIENT_LOADED,
    EmergencyStatus.ARRIVED_AT_HOSPITAL: EmergencyStatus.COMPLETED,
    **UNIT_TRANSITIONS,
}

TIMESTAMP_FIELDS = {
    EmergencyStatus.ASSIGNED: "assigned_at",
    EmergencyStatus.ENROUTE: "enroute_at",
    EmergencyStatus.ARRIVED_AT_SCENE: "arrived_at_scene_at",
    EmergencyStatus.PATIENT_LOADED: "patient_loaded_at",
    EmergencyStatus.ENROUTE_TO_HOSPITAL: "enroute_to_hospital_at",
    EmergencyStatus.ARRIVED_AT_HOSPITAL: "arrived_at_hospital_at",
    EmergencyStatus.COMPLETED: "completed_at",
    EmergencyStatus.CANCELLED: "cancelled_at",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def enter_status(record: EmergencyRecord, target: EmergencyStatus, now: datetime) -> None:
    """Move ``record`` into ``target`` and stamp the entered-at field.

    Callers validate the transition first.
    """
    record.status = target
    setattr(record, TIMESTAMP_FIELDS[target], now)
    record.awaiting_confirmation = target in GATE_STATUSES
    record.updated_at = now


class StateMachine:
    """Validates and applies status transitions on stored records."""

    def __init__(
        self,
        repository: EmergencyRepository,
        active_index: ActiveIndex,
        unit_availability: UnitAvailabilityMaintainer,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.active_index = active_index
        self.unit_availability = unit_availability
        self.clock = clock

    def advance_status(
        self,
        record_id: str,
        target: EmergencyStatus,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> EmergencyRecord:
        """Apply a unit-driven transition.

        Raises:
            RecordNotFound: unknown id
            Forbidden: caller is not the assigned unit
            InvalidTransition: target is not the unit's legal next status
            Conflict: the record changed since it was read
        """
        record, version = self.repository.get(record_id)

        if actor.role != ActorRole.UNIT:
            raise Forbidden("Only the transport unit can advance status")
        try:
            target = EmergencyStatus(target)
        except ValueError:
            raise InvalidTransition(f"Unknown status {target}")
        expected = UNIT_TRANSITIONS.get(record.status)
        if expected is None or target != expected:
            raise InvalidTransition(
                f"Cannot move {record_id} from {record.status.value} to {target.value}"
            )
        if record.unit_id != actor.actor_id:
            raise Forbidden(f"Unit {actor.actor_id} is not assigned to {record_id}")

        enter_status(record, target, self.clock())
        if notes:
            record.notes = notes
        self.repository.save(record, version)

        if target in GATE_STATUSES:
            logger.info(f"Emergency {record_id} reached {target.value}; awaiting confirmation")
        else:
            logger.info(f"Emergency {record_id} status updated to {target.value}")
        return record

    def cancel(self, record_id: str, actor: Actor, reason: Optional[str] = None) -> EmergencyRecord:
        """Cancel a non-terminal record. Requester (owner) or admin only."""
        record, version = self.repository.get(record_id)

        is_owner = actor.role == ActorRole.REQUESTER and actor.actor_id == record.requester_id
        if not (is_owner or actor.role == ActorRole.ADMIN):
            raise Forbidden("Only the requester or an administrator can cancel")
        if record.status.is_terminal:
            raise InvalidTransition(f"Emergency {record_id} is already {record.status.value}")

        enter_status(record, EmergencyStatus.CANCELLED, self.clock())
        record.cancelled_by = actor.actor_id
        if reason:
            record.notes = reason
        self.repository.save(record, version)
        logger.info(f"Emergency {record_id} cancelled by {actor.role.value} {actor.actor_id}")

        self.retire(record)
        return record

    def retire(self, record: EmergencyRecord) -> None:
        """Terminal side effects: leave the active index and free the unit.

        Runs after the record write; failures are logged by the maintainers.
        """
        if not self.active_index.remove(record.id):
            logger.warning(f"Emergency {record.id} could not be removed from the active index")
        if not self.unit_availability.release(record.unit_id, record.id):
            logger.warning(f"Unit {record.unit_id} not released for {record.id}")
