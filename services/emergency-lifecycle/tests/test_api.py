"""HTTP tests for the emergency lifecycle API."""
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

import main
from shared.types import EmergencyStatus
from main import app, get_coordinator


def headers(actor_id, role):
    return {"X-Actor-Id": actor_id, "X-Actor-Role": role}


REQUESTER = headers("patient-1", "requester")
OTHER_REQUESTER = headers("patient-2", "requester")
UNIT = headers("U1", "unit")
OTHER_UNIT = headers("U2", "unit")
FACILITY = headers("F1", "facility")
ADMIN = headers("ops-1", "admin")


@pytest.fixture
def client(coordinator):
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def emergency_id(client, clock):
    clock.advance(seconds=1)
    response = client.post(
        "/api/v1/emergencies",
        json={
            "latitude": 43.4723,
            "longitude": -80.5449,
            "description": "Severe allergic reaction",
            "name": "Pat Doe",
            "phone": "555-0101",
        },
        headers=REQUESTER,
    )
    assert response.status_code == 201
    return response.json()["emergency"]["id"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["service"] == "emergency-lifecycle"


def test_create_returns_pending_record(client, emergency_id):
    response = client.get(f"/api/v1/emergencies/{emergency_id}", headers=REQUESTER)

    assert response.status_code == 200
    emergency = response.json()["emergency"]
    assert emergency["status"] == "pending"
    assert emergency["requester"]["name"] == "Pat Doe"
    assert emergency["awaiting_confirmation"] is False


def test_missing_identity_is_401(client):
    response = client.get("/api/v1/emergencies/active")
    assert response.status_code == 401
    assert response.json()["error"] == "unauthenticated"


def test_unknown_role_is_401(client):
    response = client.get("/api/v1/emergencies/active", headers=headers("x", "janitor"))
    assert response.status_code == 401


def test_unit_cannot_create(client):
    response = client.post(
        "/api/v1/emergencies", json={"latitude": 1.0, "longitude": 2.0}, headers=UNIT
    )
    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"


def test_out_of_range_location_is_400(client):
    response = client.post(
        "/api/v1/emergencies", json={"latitude": 123.0, "longitude": 2.0}, headers=REQUESTER
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


def test_unknown_emergency_is_404(client):
    response = client.get("/api/v1/emergencies/emergency:1:nobody", headers=FACILITY)
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_other_requester_cannot_view(client, emergency_id):
    response = client.get(f"/api/v1/emergencies/{emergency_id}", headers=OTHER_REQUESTER)
    assert response.status_code == 403


def test_full_lifecycle_over_http(client, emergency_id):
    base = f"/api/v1/emergencies/{emergency_id}"

    active = client.get("/api/v1/emergencies/active", headers=FACILITY).json()["emergencies"]
    assert [e["id"] for e in active] == [emergency_id]

    response = client.post(f"{base}/assign", json={"unit_id": "U1", "estimated_time": 9}, headers=FACILITY)
    assert response.status_code == 200
    assert response.json()["emergency"]["facility"]["name"] == "Grand River Hospital"

    for status in ("enroute", "arrived_at_scene"):
        response = client.patch(f"{base}/status", json={"status": status}, headers=UNIT)
        assert response.status_code == 200
    assert response.json()["emergency"]["awaiting_confirmation"] is True

    response = client.post(f"{base}/confirm", json={"gate": "arrival"}, headers=REQUESTER)
    assert response.json()["emergency"]["status"] == "patient_loaded"

    for status in ("enroute_to_hospital", "arrived_at_hospital"):
        response = client.patch(f"{base}/status", json={"status": status}, headers=UNIT)
        assert response.status_code == 200

    response = client.post(f"{base}/proxy-confirm", json={"gate": "completion"}, headers=FACILITY)
    emergency = response.json()["emergency"]
    assert emergency["status"] == "completed"
    assert emergency["completion_confirmed_by"] == "facility"

    assert client.get("/api/v1/emergencies/active", headers=UNIT).json()["emergencies"] == []
    mine = client.get("/api/v1/emergencies/mine", headers=REQUESTER).json()["emergencies"]
    assert [e["status"] for e in mine] == ["completed"]


def test_invalid_transition_is_409(client, emergency_id):
    client.post(f"/api/v1/emergencies/{emergency_id}/assign", json={"unit_id": "U1"}, headers=FACILITY)

    response = client.patch(
        f"/api/v1/emergencies/{emergency_id}/status", json={"status": "completed"}, headers=UNIT
    )
    assert response.status_code == 409
    assert response.json()["error"] == "invalid_transition"


def test_double_assign_is_409(client, emergency_id):
    client.post(f"/api/v1/emergencies/{emergency_id}/assign", json={"unit_id": "U1"}, headers=FACILITY)

    response = client.post(
        f"/api/v1/emergencies/{emergency_id}/assign", json={"facility_id": "F1"}, headers=OTHER_UNIT
    )
    assert response.status_code == 409
    assert response.json()["error"] == "already_assigned"


def test_timeout_advance_over_http(client, emergency_id, clock):
    base = f"/api/v1/emergencies/{emergency_id}"
    client.post(f"{base}/assign", json={"facility_id": "F1"}, headers=UNIT)
    client.patch(f"{base}/status", json={"status": "enroute"}, headers=UNIT)
    client.patch(f"{base}/status", json={"status": "arrived_at_scene"}, headers=UNIT)

    early = client.post(f"{base}/timeout-advance", headers=UNIT)
    assert early.status_code == 400
    assert early.json()["error"] == "timeout_not_reached"

    clock.advance(minutes=30)
    response = client.post(f"{base}/timeout-advance", headers=UNIT)
    assert response.status_code == 200
    assert response.json()["auto_advanced"] is True
    assert response.json()["emergency"]["status"] == "patient_loaded"

    again = client.post(f"{base}/confirm", json={"gate": "arrival"}, headers=REQUESTER)
    assert again.status_code == 409
    assert again.json()["error"] == "wrong_state"


def test_cancel_with_and_without_body(client, emergency_id, clock):
    response = client.post(
        f"/api/v1/emergencies/{emergency_id}/cancel", json={"reason": "Resolved"}, headers=REQUESTER
    )
    assert response.status_code == 200
    assert response.json()["emergency"]["status"] == "cancelled"
    assert response.json()["emergency"]["notes"] == "Resolved"

    again = client.post(f"/api/v1/emergencies/{emergency_id}/cancel", headers=REQUESTER)
    assert again.status_code == 409


def test_units_and_location(client, emergency_id):
    client.post(f"/api/v1/emergencies/{emergency_id}/assign", json={"unit_id": "U1"}, headers=FACILITY)

    available = client.get("/api/v1/units", params={"availability": "available"}, headers=FACILITY)
    assert [u["id"] for u in available.json()["units"]] == ["U2"]

    response = client.post("/api/v1/units/U2/location", json={"latitude": 43.5, "longitude": -80.5}, headers=OTHER_UNIT)
    assert response.status_code == 200
    assert response.json()["status"] == "updated"
    assert response.json()["unit"]["latitude"] == 43.5

    forbidden = client.post("/api/v1/units/U1/location", json={"latitude": 43.5, "longitude": -80.5}, headers=OTHER_UNIT)
    assert forbidden.status_code == 403


def test_analytics_and_reconcile(client, emergency_id):
    analytics = client.get("/api/v1/analytics", headers=FACILITY)
    assert analytics.status_code == 200
    assert analytics.json()["stats"]["pending"] == 1

    assert client.post("/api/v1/admin/reconcile", headers=FACILITY).status_code == 403
    reconciled = client.post("/api/v1/admin/reconcile", headers=ADMIN)
    assert reconciled.status_code == 200
    assert reconciled.json()["active"] == [emergency_id]


class StopSweep(Exception):
    pass


def test_timeout_sweeper_uses_overridden_coordinator(client, record_at, clock):
    record = record_at(EmergencyStatus.ARRIVED_AT_SCENE)
    clock.advance(minutes=30)

    with patch.object(main.time, "sleep", side_effect=StopSweep):
        with pytest.raises(StopSweep):
            main.run_timeout_sweeper()

    response = client.get(f"/api/v1/emergencies/{record.id}", headers=FACILITY)
    assert response.json()["emergency"]["status"] == "patient_loaded"
    assert response.json()["emergency"]["auto_advanced"] is True
