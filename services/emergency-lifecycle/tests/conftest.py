"""Fixtures for the emergency lifecycle tests."""
from datetime import datetime, timedelta, timezone

import pytest

from shared.record_store import InMemoryRecordStore
from shared.types import (
    Actor, ActorRole, EmergencyStatus, Facility, Gate, RequesterSnapshot, TransportUnit
)
from coordinator import EmergencyCoordinator
from state_machine import GATE_STATUSES


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


LIFECYCLE_PATH = [
    EmergencyStatus.PENDING,
    EmergencyStatus.ASSIGNED,
    EmergencyStatus.ENROUTE,
    EmergencyStatus.ARRIVED_AT_SCENE,
    EmergencyStatus.PATIENT_LOADED,
    EmergencyStatus.ENROUTE_TO_HOSPITAL,
    EmergencyStatus.ARRIVED_AT_HOSPITAL,
    EmergencyStatus.COMPLETED,
]


def assert_gate_invariant(record):
    """awaiting_confirmation iff at a gate whose flag is still unset."""
    flag = {
        EmergencyStatus.ARRIVED_AT_SCENE: record.arrival_confirmed,
        EmergencyStatus.ARRIVED_AT_HOSPITAL: record.completion_confirmed,
    }.get(record.status)
    expected = record.status in GATE_STATUSES and flag is False
    assert record.awaiting_confirmation == expected


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def coordinator(store, clock):
    service = EmergencyCoordinator(store, clock=clock, timeout_minutes=30)
    service.repository.register_unit(TransportUnit(id="U1", name="Medic 1", vehicle_number="AMB-101"))
    service.repository.register_unit(TransportUnit(id="U2", name="Medic 2", vehicle_number="AMB-102"))
    service.repository.register_facility(Facility(
        id="F1",
        name="Grand River Hospital",
        address="835 King St W",
        phone="519-555-0100",
        latitude=43.455280,
        longitude=-80.505836,
    ))
    service.repository.register_facility(Facility(id="F2", name="St. Mary's"))
    return service


@pytest.fixture
def requester():
    return Actor(actor_id="patient-1", role=ActorRole.REQUESTER)


@pytest.fixture
def other_requester():
    return Actor(actor_id="patient-2", role=ActorRole.REQUESTER)


@pytest.fixture
def unit():
    return Actor(actor_id="U1", role=ActorRole.UNIT)


@pytest.fixture
def other_unit():
    return Actor(actor_id="U2", role=ActorRole.UNIT)


@pytest.fixture
def facility():
    return Actor(actor_id="F1", role=ActorRole.FACILITY)


@pytest.fixture
def other_facility():
    return Actor(actor_id="F2", role=ActorRole.FACILITY)


@pytest.fixture
def admin():
    return Actor(actor_id="ops-1", role=ActorRole.ADMIN)


@pytest.fixture
def new_record(coordinator, requester, clock):
    """Create a pending record; the clock moves so ids never collide."""
    def create(actor=None):
        clock.advance(seconds=1)
        return coordinator.create_record(
            actor or requester,
            latitude=43.4723,
            longitude=-80.5449,
            description="Chest pain, difficulty breathing",
            requester=RequesterSnapshot(name="Pat Doe", phone="555-0101", email="pat@example.com"),
        )
    return create


@pytest.fixture
def record_at(coordinator, new_record, requester, unit, facility):
    """Create a record and walk it to ``status`` through the direct paths."""
    def walk(status: EmergencyStatus):
        record = new_record()
        for step in LIFECYCLE_PATH[1:LIFECYCLE_PATH.index(status) + 1]:
            if step == EmergencyStatus.ASSIGNED:
                record = coordinator.assign(record.id, facility, unit_id=unit.actor_id, estimated_time=8)
            elif step == EmergencyStatus.PATIENT_LOADED:
                record = coordinator.confirm_direct(record.id, Gate.ARRIVAL, requester)
            elif step == EmergencyStatus.COMPLETED:
                record = coordinator.confirm_direct(record.id, Gate.COMPLETION, requester)
            else:
                record = coordinator.advance_status(record.id, step, unit)
        return record
    return walk
