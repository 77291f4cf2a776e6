"""Emergency Lifecycle Service - requester, unit and facility API for transport requests."""
import os
import sys
import time
import logging
import threading
from typing import Optional
from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Add shared module to path
sys.path.append(os.path.join(os.path.dirname(__file__), '../../'))

from shared.errors import EmergencyError
from shared.record_store import create_record_store
from shared.types import (
    Actor, AssignRequest, CancelRequest, ConfirmRequest, CreateEmergencyRequest,
    LocationUpdate, RequesterSnapshot, StatusUpdateRequest, UnitAvailability
)
from coordinator import EmergencyCoordinator
from identity import get_actor

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
SERVICE_PORT = int(os.getenv("SERVICE_PORT", "8006"))
# Clients are expected to refresh on this interval; there is no push channel.
POLL_INTERVAL_SECONDS = int(os.getenv("POLL_INTERVAL_SECONDS", "5"))
TIMEOUT_SWEEP_INTERVAL_SECONDS = int(os.getenv("TIMEOUT_SWEEP_INTERVAL_SECONDS", "0"))

logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Emergency Lifecycle Service", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

store = create_record_store()
coordinator = EmergencyCoordinator(store)


def get_coordinator() -> EmergencyCoordinator:
    return coordinator


@app.exception_handler(EmergencyError)
async def emergency_error_handler(request: Request, exc: EmergencyError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse({"error": exc.code, "detail": exc.message}, status_code=exc.status_code)


@app.post("/api/v1/emergencies", status_code=201)
def create_emergency(
    body: CreateEmergencyRequest,
    actor: Actor = Depends(get_actor),
    service: EmergencyCoordinator = Depends(get_coordinator),
):
    """Create an emergency request (requester)."""
    record = service.create_record(
        actor,
        latitude=body.latitude,
        longitude=body.longitude,
        description=body.description,
        requester=RequesterSnapshot(name=body.name, phone=body.phone, email=body.email),
    )
    return {"emergency": record}


@app.get("/api/v1/emergencies/active")
def list_active_emergencies(
    actor: Actor = Depends(get_actor),
    service: EmergencyCoordinator = Depends(get_coordinator),
):
    """Non-terminal emergencies (units and facilities)."""
    return {"emergencies": service.list_active(actor)}


@app.get("/api/v1/emergencies/mine")
def list_my_emergencies(
    actor: Actor = Depends(get_actor),
    service: EmergencyCoordinator = Depends(get_coordinator),
):
    """The requester's own emergencies, newest first."""
    return {"emergencies": service.list_own(actor)}


@app.get("/api/v1/emergencies/{record_id}")
def get_emergency(
    record_id: str,
    actor: Actor = Depends(get_actor),
    service: EmergencyCoordinator = Depends(get_coordinator),
):
    return {"emergency": service.get_record(record_id, actor)}


@app.post("/api/v1/emergencies/{record_id}/assign")
def assign_emergency(
    record_id: str,
    body: AssignRequest,
    actor: Actor = Depends(get_actor),
    service: EmergencyCoordinator = Depends(get_coordinator),
):
    """Bind a unit and facility to a pending emergency."""
    record = service.assign(
        record_id, actor,
        unit_id=body.unit_id,
        facility_id=body.facility_id,
        estimated_time=body.estimated_time,
    )
    return {"emergency": record}


@app.patch("/api/v1/emergencies/{record_id}/status")
def update_emergency_status(
    record_id: str,
    body: StatusUpdateRequest,
    actor: Actor = Depends(get_actor),
    service: EmergencyCoordinator = Depends(get_coordinator),
):
    """Unit advances the emergency to its next status."""
    record = service.advance_status(record_id, body.status, actor, notes=body.notes)
    return {"emergency": record}


@app.post("/api/v1/emergencies/{record_id}/cancel")
def cancel_emergency(
    record_id: str,
    body: Optional[CancelRequest] = None,
    actor: Actor = Depends(get_actor),
    service: EmergencyCoordinator = Depends(get_coordinator),
):
    record = service.cancel(record_id, actor, reason=body.reason if body else None)
    return {"emergency": record}


@app.post("/api/v1/emergencies/{record_id}/confirm")
def confirm_emergency(
    record_id: str,
    body: ConfirmRequest,
    actor: Actor = Depends(get_actor),
    service: EmergencyCoordinator = Depends(get_coordinator),
):
    """Requester confirms arrival or completion."""
    return {"emergency": service.confirm_direct(record_id, body.gate, actor)}


@app.post("/api/v1/emergencies/{record_id}/proxy-confirm")
def proxy_confirm_emergency(
    record_id: str,
    body: ConfirmRequest,
    actor: Actor = Depends(get_actor),
    service: EmergencyCoordinator = Depends(get_coordinator),
):
    """Facility confirms on behalf of the requester."""
    return {"emergency": service.confirm_proxy(record_id, body.gate, actor)}


@app.post("/api/v1/emergencies/{record_id}/timeout-advance")
def timeout_advance_emergency(
    record_id: str,
    actor: Actor = Depends(get_actor),
    service: EmergencyCoordinator = Depends(get_coordinator),
):
    """Advance past an unconfirmed gate once the timeout has elapsed."""
    record = service.timeout_advance(record_id, actor)
    return {"emergency": record, "auto_advanced": record.auto_advanced}


@app.get("/api/v1/units")
def get_units(
    availability: Optional[UnitAvailability] = None,
    actor: Actor = Depends(get_actor),
    service: EmergencyCoordinator = Depends(get_coordinator),
):
    """Get all units, optionally filtered by availability."""
    return {"units": service.list_units(actor, availability)}


@app.post("/api/v1/units/{unit_id}/location")
def update_unit_location(
    unit_id: str,
    location: LocationUpdate,
    actor: Actor = Depends(get_actor),
    service: EmergencyCoordinator = Depends(get_coordinator),
):
    """Update unit location."""
    unit = service.update_unit_location(unit_id, actor, location.latitude, location.longitude)
    return {"status": "updated", "unit": unit}


@app.get("/api/v1/analytics")
def get_analytics(
    actor: Actor = Depends(get_actor),
    service: EmergencyCoordinator = Depends(get_coordinator),
):
    return service.analytics(actor)


@app.post("/api/v1/admin/reconcile")
def reconcile_side_tables(
    actor: Actor = Depends(get_actor),
    service: EmergencyCoordinator = Depends(get_coordinator),
):
    """Rebuild the active index and unit availability from record status."""
    return service.reconcile(actor)


def run_timeout_sweeper():
    """Periodically auto-advance expired confirmation gates."""
    while True:
        try:
            service = app.dependency_overrides.get(get_coordinator, get_coordinator)()
            service.sweep_timeouts()
        except Exception:
            logger.exception("Timeout sweep failed")
        time.sleep(TIMEOUT_SWEEP_INTERVAL_SECONDS)


@app.on_event("startup")
async def startup():
    """Start the timeout sweeper when an interval is configured."""
    if TIMEOUT_SWEEP_INTERVAL_SECONDS > 0:
        thread = threading.Thread(target=run_timeout_sweeper, daemon=True, name="timeout-sweeper")
        thread.start()
        logger.info(f"Timeout sweeper started (every {TIMEOUT_SWEEP_INTERVAL_SECONDS}s)")


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "emergency-lifecycle",
        "poll_interval_seconds": POLL_INTERVAL_SECONDS,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=SERVICE_PORT)
