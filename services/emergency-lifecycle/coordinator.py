"""Boundary operations for requesters, units and facilities.

Wires the repository, state machine, assignment, confirmation gates and the
two side-table maintainers over one record store.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from shared.errors import Forbidden, InvalidRequest, RecordNotFound
from shared.record_store import RecordStore
from shared.types import (
    Actor, ActorRole, EmergencyRecord, EmergencyStatus, Gate,
    RequesterSnapshot, TransportUnit, UnitAvailability
)
from active_index import ActiveIndex
from analytics import compute_analytics
from assignment import AssignmentCoordinator
from confirmation import CONFIRMATION_TIMEOUT_MINUTES, ConfirmationGates
from reconcile import rebuild_active_index, reconcile_units
from repository import RECORD_PREFIX, EmergencyRepository
from state_machine import StateMachine, utcnow
from unit_availability import UnitAvailabilityMaintainer

logger = logging.getLogger(__name__)


def _require_role(actor: Actor, *roles: ActorRole) -> None:
    if actor.role not in roles:
        allowed = ", ".join(role.value for role in roles)
        raise Forbidden(f"Access denied - only {allowed} can perform this action")


class EmergencyCoordinator:
    """Stateless request/response facade over the lifecycle components."""

    def __init__(
        self,
        store: RecordStore,
        clock: Callable[[], datetime] = utcnow,
        timeout_minutes: int = CONFIRMATION_TIMEOUT_MINUTES,
    ):
        self.clock = clock
        self.repository = EmergencyRepository(store)
        self.active_index = ActiveIndex(store)
        self.unit_availability = UnitAvailabilityMaintainer(self.repository, clock)
        self.state_machine = StateMachine(
            self.repository, self.active_index, self.unit_availability, clock
        )
        self.assignment = AssignmentCoordinator(self.repository, self.unit_availability, clock)
        self.gates = ConfirmationGates(self.repository, self.state_machine, clock, timeout_minutes)

    # Records

    def create_record(
        self,
        actor: Actor,
        latitude: float,
        longitude: float,
        description: str,
        requester: RequesterSnapshot,
    ) -> EmergencyRecord:
        _require_role(actor, ActorRole.REQUESTER)
        if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
            raise InvalidRequest("Location out of range")

        now = self.clock()
        record = EmergencyRecord(
            id=f"{RECORD_PREFIX}{int(now.timestamp() * 1000)}:{actor.actor_id}",
            requester_id=actor.actor_id,
            requester=requester,
            latitude=latitude,
            longitude=longitude,
            description=description,
            status=EmergencyStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.repository.create(record)
        if not self.active_index.add(record.id):
            logger.warning(f"Emergency {record.id} missing from active index until reconciliation")

        logger.info(f"Emergency created: {record.id} for requester {actor.actor_id}")
        return record

    def get_record(self, record_id: str, actor: Actor) -> EmergencyRecord:
        record, _ = self.repository.get(record_id)
        if actor.role == ActorRole.REQUESTER and record.requester_id != actor.actor_id:
            raise Forbidden("Requesters can only view their own emergencies")
        return record

    def list_active(self, actor: Actor) -> List[EmergencyRecord]:
        """Non-terminal records, in creation order, via the active index."""
        _require_role(actor, ActorRole.UNIT, ActorRole.FACILITY)
        active = []
        for record_id in self.active_index.ids():
            try:
                record, _ = self.repository.get(record_id)
            except RecordNotFound:
                logger.warning(f"Active index references missing emergency {record_id}")
                continue
            if not record.status.is_terminal:
                active.append(record)
        return active

    def list_own(self, actor: Actor) -> List[EmergencyRecord]:
        """All of the requester's records, newest first."""
        _require_role(actor, ActorRole.REQUESTER)
        own = [r for r in self.repository.list_records() if r.requester_id == actor.actor_id]
        return sorted(own, key=lambda r: r.created_at, reverse=True)

    # Lifecycle

    def assign(
        self,
        record_id: str,
        actor: Actor,
        unit_id: Optional[str] = None,
        facility_id: Optional[str] = None,
        estimated_time: Optional[int] = None,
    ) -> EmergencyRecord:
        return self.assignment.assign(record_id, actor, unit_id, facility_id, estimated_time)

    def advance_status(
        self, record_id: str, target: EmergencyStatus, actor: Actor, notes: Optional[str] = None
    ) -> EmergencyRecord:
        return self.state_machine.advance_status(record_id, target, actor, notes)

    def cancel(self, record_id: str, actor: Actor, reason: Optional[str] = None) -> EmergencyRecord:
        return self.state_machine.cancel(record_id, actor, reason)

    def confirm_direct(self, record_id: str, gate: Gate, actor: Actor) -> EmergencyRecord:
        return self.gates.confirm_direct(record_id, gate, actor)

    def confirm_proxy(self, record_id: str, gate: Gate, actor: Actor) -> EmergencyRecord:
        return self.gates.confirm_proxy(record_id, gate, actor)

    def timeout_advance(self, record_id: str, actor: Actor) -> EmergencyRecord:
        return self.gates.timeout_advance(record_id, actor)

    # Units

    def list_units(self, actor: Actor, availability: Optional[UnitAvailability] = None) -> List[TransportUnit]:
        _require_role(actor, ActorRole.UNIT, ActorRole.FACILITY, ActorRole.ADMIN)
        units = [unit for unit, _ in self.repository.scan_units()]
        if availability:
            units = [u for u in units if u.availability == availability]
        return units

    def update_unit_location(self, unit_id: str, actor: Actor, latitude: float, longitude: float) -> TransportUnit:
        return self.unit_availability.update_location(unit_id, actor, latitude, longitude)

    # Reporting and maintenance

    def analytics(self, actor: Actor) -> dict:
        _require_role(actor, ActorRole.FACILITY, ActorRole.ADMIN)
        return compute_analytics(self.repository.list_records(), self.clock())

    def reconcile(self, actor: Actor) -> dict:
        _require_role(actor, ActorRole.ADMIN)
        open_ids = rebuild_active_index(self.repository, self.active_index)
        units = reconcile_units(self.repository)
        return {"active": open_ids, **units}

    def sweep_timeouts(self) -> List[str]:
        return self.gates.sweep_expired_gates()
