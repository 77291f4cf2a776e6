"""Shared type definitions for the emergency transport services."""
from typing import Optional
from datetime import datetime
from enum import Enum
from pydantic import BaseModel


class EmergencyStatus(str, Enum):
    """Emergency record lifecycle status."""
    PENDING = "pending"
    ASSIGNED = "assigned"
    ENROUTE = "enroute"
    ARRIVED_AT_SCENE = "arrived_at_scene"
    PATIENT_LOADED = "patient_loaded"
    ENROUTE_TO_HOSPITAL = "enroute_to_hospital"
    ARRIVED_AT_HOSPITAL = "arrived_at_hospital"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (EmergencyStatus.COMPLETED, EmergencyStatus.CANCELLED)


class UnitAvailability(str, Enum):
    """Transport unit dispatch availability."""
    AVAILABLE = "available"
    BUSY = "busy"


class ActorRole(str, Enum):
    """Verified role claim handed over by the identity provider."""
    REQUESTER = "requester"
    UNIT = "unit"
    FACILITY = "facility"
    ADMIN = "admin"


class Gate(str, Enum):
    """The two confirmation gates."""
    ARRIVAL = "arrival"
    COMPLETION = "completion"


class ConfirmationSource(str, Enum):
    """Who resolved a confirmation gate."""
    REQUESTER = "requester"
    FACILITY = "facility"


class Actor(BaseModel):
    """Authenticated caller."""
    actor_id: str
    role: ActorRole


class RequesterSnapshot(BaseModel):
    """Requester contact details captured at creation time."""
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class FacilitySnapshot(BaseModel):
    """Facility details copied onto the record at assignment time."""
    id: str
    name: str
    address: str
    phone: str
    latitude: float
    longitude: float


class Facility(BaseModel):
    """Receiving facility (hospital) profile."""
    id: str
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class TransportUnit(BaseModel):
    """Dispatch-relevant state of a transport unit (ambulance)."""
    id: str
    name: Optional[str] = None
    vehicle_number: Optional[str] = None
    availability: UnitAvailability = UnitAvailability.AVAILABLE
    current_assignment: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    last_location_update: Optional[datetime] = None


class EmergencyRecord(BaseModel):
    """One emergency transport request and its full lifecycle state."""
    id: str
    requester_id: str
    requester: RequesterSnapshot
    latitude: float
    longitude: float
    description: str = ""
    status: EmergencyStatus = EmergencyStatus.PENDING

    unit_id: Optional[str] = None
    facility_id: Optional[str] = None
    facility: Optional[FacilitySnapshot] = None
    estimated_time: Optional[int] = None  # minutes

    created_at: datetime
    updated_at: datetime
    assigned_at: Optional[datetime] = None
    enroute_at: Optional[datetime] = None
    arrived_at_scene_at: Optional[datetime] = None
    patient_loaded_at: Optional[datetime] = None
    enroute_to_hospital_at: Optional[datetime] = None
    arrived_at_hospital_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None

    arrival_confirmed: bool = False
    arrival_confirmed_by: Optional[ConfirmationSource] = None
    arrival_confirmed_at: Optional[datetime] = None
    completion_confirmed: bool = False
    completion_confirmed_by: Optional[ConfirmationSource] = None
    completion_confirmed_at: Optional[datetime] = None
    awaiting_confirmation: bool = False

    auto_advanced: bool = False
    auto_advanced_reason: Optional[str] = None
    auto_advanced_at: Optional[datetime] = None

    notes: Optional[str] = None


class CreateEmergencyRequest(BaseModel):
    latitude: float
    longitude: float
    description: str = ""
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class AssignRequest(BaseModel):
    unit_id: Optional[str] = None
    facility_id: Optional[str] = None
    estimated_time: Optional[int] = None


class StatusUpdateRequest(BaseModel):
    status: EmergencyStatus
    notes: Optional[str] = None


class ConfirmRequest(BaseModel):
    gate: Gate


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class LocationUpdate(BaseModel):
    latitude: float
    longitude: float
