"""Confirmation gates.

The unit cannot unilaterally assert that the patient was picked up or
delivered. On arrival at the scene and at the hospital the record waits for
one of three resolutions:

- direct confirmation by the requester
- proxy confirmation by the named facility
- timeout auto-advance by the unit or facility once the threshold has passed

Exactly one resolution applies per gate; the gate closes on the first and the
others then fail with WrongState. A timeout advances the workflow but leaves
the confirmation flag False and marks the record auto_advanced.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from shared.errors import (
    Conflict, Forbidden, TimeoutNotReached, WrongState
)
from shared.types import (
    Actor, ActorRole, ConfirmationSource, EmergencyRecord, EmergencyStatus, Gate
)
from repository import EmergencyRepository
from state_machine import SUCCESSORS, StateMachine, enter_status, utcnow

logger = logging.getLogger(__name__)

CONFIRMATION_TIMEOUT_MINUTES = int(os.getenv("CONFIRMATION_TIMEOUT_MINUTES", "30"))


@dataclass(frozen=True)
class GateSpec:
    gate: Gate
    status: EmergencyStatus
    entered_field: str
    flag_field: str

    @property
    def successor(self) -> EmergencyStatus:
        return SUCCESSORS[self.status]


GATES = {
    Gate.ARRIVAL: GateSpec(
        gate=Gate.ARRIVAL,
        status=EmergencyStatus.ARRIVED_AT_SCENE,
        entered_field="arrived_at_scene_at",
        flag_field="arrival_confirmed",
    ),
    Gate.COMPLETION: GateSpec(
        gate=Gate.COMPLETION,
        status=EmergencyStatus.ARRIVED_AT_HOSPITAL,
        entered_field="arrived_at_hospital_at",
        flag_field="completion_confirmed",
    ),
}

GATE_BY_STATUS = {spec.status: spec for spec in GATES.values()}


class ConfirmationGates:
    """Resolves the arrival and completion gates."""

    def __init__(
        self,
        repository: EmergencyRepository,
        state_machine: StateMachine,
        clock: Callable[[], datetime] = utcnow,
        timeout_minutes: int = CONFIRMATION_TIMEOUT_MINUTES,
    ):
        self.repository = repository
        self.state_machine = state_machine
        self.clock = clock
        self.timeout = timedelta(minutes=timeout_minutes)
        self.timeout_minutes = timeout_minutes

    def confirm_direct(self, record_id: str, gate: Gate, actor: Actor) -> EmergencyRecord:
        """Requester confirms pickup (arrival) or delivery (completion)."""
        spec = GATES[Gate(gate)]
        record, version = self.repository.get(record_id)
        if actor.role != ActorRole.REQUESTER or actor.actor_id != record.requester_id:
            raise Forbidden(f"Only the requester can confirm {spec.gate.value}")
        self._require_open(record, spec)

        self._resolve(record, version, spec, confirmed_by=ConfirmationSource.REQUESTER)
        logger.info(f"Requester confirmed {spec.gate.value} for emergency {record_id}")
        return record

    def confirm_proxy(self, record_id: str, gate: Gate, actor: Actor) -> EmergencyRecord:
        """Named facility confirms on behalf of the requester."""
        spec = GATES[Gate(gate)]
        record, version = self.repository.get(record_id)
        if actor.role != ActorRole.FACILITY or actor.actor_id != record.facility_id:
            raise Forbidden(f"Only the assigned facility can confirm {spec.gate.value} on the requester's behalf")
        self._require_open(record, spec)

        self._resolve(record, version, spec, confirmed_by=ConfirmationSource.FACILITY)
        logger.info(f"Facility {actor.actor_id} confirmed {spec.gate.value} for emergency {record_id}")
        return record

    def timeout_advance(self, record_id: str, actor: Actor) -> EmergencyRecord:
        """Advance past the open gate without confirmation once the threshold passed."""
        record, version = self.repository.get(record_id)
        if actor.role == ActorRole.UNIT:
            allowed = actor.actor_id == record.unit_id
        elif actor.role == ActorRole.FACILITY:
            allowed = actor.actor_id == record.facility_id
        else:
            allowed = False
        if not allowed:
            raise Forbidden("Only the assigned unit or facility can trigger a timeout advance")

        spec = GATE_BY_STATUS.get(record.status)
        if spec is None or not record.awaiting_confirmation:
            raise WrongState(f"Emergency {record_id} is not awaiting confirmation")

        self._auto_advance(record, version, spec)
        return record

    def sweep_expired_gates(self) -> List[str]:
        """Auto-advance every open gate past the threshold.

        Active alternative to caller-triggered timeout_advance with the same
        outcome. Records that change underneath the sweep are skipped and
        picked up on the next pass.
        """
        advanced = []
        for record, version in self.repository.scan_records():
            spec = GATE_BY_STATUS.get(record.status)
            if spec is None or not record.awaiting_confirmation:
                continue
            try:
                self._auto_advance(record, version, spec)
            except TimeoutNotReached:
                continue
            except (Conflict, WrongState) as e:
                logger.info(f"Skipping {record.id} during sweep: {e.message}")
                continue
            advanced.append(record.id)
        if advanced:
            logger.info(f"Timeout sweep advanced {len(advanced)} emergencies")
        return advanced

    def _require_open(self, record: EmergencyRecord, spec: GateSpec) -> None:
        if record.status != spec.status or not record.awaiting_confirmation:
            raise WrongState(
                f"Emergency {record.id} is not awaiting {spec.gate.value} confirmation "
                f"(status {record.status.value})"
            )

    def _auto_advance(self, record: EmergencyRecord, version: int, spec: GateSpec) -> None:
        now = self.clock()
        entered: Optional[datetime] = getattr(record, spec.entered_field)
        elapsed = now - entered if entered else timedelta(0)
        if elapsed < self.timeout:
            remaining = self.timeout - elapsed
            raise TimeoutNotReached(
                f"Timeout period has not passed yet ({self.timeout_minutes} minutes required, "
                f"{int(remaining.total_seconds() // 60)} remaining)"
            )

        record.auto_advanced = True
        record.auto_advanced_reason = (
            f"{spec.gate.value.capitalize()} confirmation timeout after {self.timeout_minutes} minutes"
        )
        record.auto_advanced_at = now
        self._resolve(record, version, spec, confirmed_by=None, now=now)
        logger.warning(f"Emergency {record.id} auto-advanced past {spec.gate.value} gate without confirmation")

    def _resolve(
        self,
        record: EmergencyRecord,
        version: int,
        spec: GateSpec,
        confirmed_by: Optional[ConfirmationSource],
        now: Optional[datetime] = None,
    ) -> None:
        now = now or self.clock()
        setattr(record, spec.flag_field, confirmed_by is not None)
        setattr(record, f"{spec.flag_field}_by", confirmed_by)
        setattr(record, f"{spec.flag_field}_at", now if confirmed_by else None)
        enter_status(record, spec.successor, now)
        self.repository.save(record, version)

        if spec.successor.is_terminal:
            self.state_machine.retire(record)
