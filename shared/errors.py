"""Error taxonomy shared by the store adapter and the lifecycle service.

Every error carries a stable ``code`` and the HTTP status the service maps it
to. All of them are caller-correctable except ``StoreUnavailable``, which is
transient.
"""


class EmergencyError(Exception):
    """Base class for all lifecycle errors."""
    code = "error"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class RecordNotFound(EmergencyError):
    code = "not_found"
    status_code = 404


class Forbidden(EmergencyError):
    code = "forbidden"
    status_code = 403


class Unauthenticated(EmergencyError):
    code = "unauthenticated"
    status_code = 401


class InvalidRequest(EmergencyError):
    code = "invalid_request"
    status_code = 400


class InvalidTransition(EmergencyError):
    code = "invalid_transition"
    status_code = 409


class WrongState(EmergencyError):
    code = "wrong_state"
    status_code = 409


class AlreadyAssigned(EmergencyError):
    code = "already_assigned"
    status_code = 409


class TimeoutNotReached(EmergencyError):
    code = "timeout_not_reached"
    status_code = 400


class Conflict(EmergencyError):
    """Optimistic concurrency check failed; the caller may re-read and retry."""
    code = "conflict"
    status_code = 409


class StoreUnavailable(EmergencyError):
    code = "store_unavailable"
    status_code = 503
