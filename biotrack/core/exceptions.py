"""
Error taxonomy for the attendance engine.

Every error carries a machine readable ``error_type`` and enough structured
detail (window bounds, record state, distances) for the caller to explain the
rejection. Storage faults are not wrapped here; ``SQLAlchemyError`` propagates
as-is and the caller decides whether to retry.
"""
from typing import Any, Dict


class AttendanceError(Exception):
    """Base class for recoverable engine errors"""
    error_type = "attendance_error"
    status_code = 400

    def __init__(self, message: str, **detail: Any):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "error_type": self.error_type, **self.detail}


# Identity resolution

class IdentityResolutionError(AttendanceError):
    error_type = "identity_resolution_error"


class NoEnrolledIdentities(IdentityResolutionError):
    error_type = "no_enrolled_identities"
    status_code = 404


class NotRecognized(IdentityResolutionError):
    error_type = "not_recognized"
    status_code = 401


class InvalidEmbedding(IdentityResolutionError):
    error_type = "invalid_embedding"
    status_code = 422


class DuplicateIdentity(IdentityResolutionError):
    error_type = "duplicate_identity"
    status_code = 409


class AlreadyEnrolled(IdentityResolutionError):
    error_type = "already_enrolled"
    status_code = 409


# Scheduling

class SchedulingError(AttendanceError):
    error_type = "scheduling_error"
    status_code = 422


class NoScheduleMatch(SchedulingError):
    error_type = "no_schedule_match"


class TooEarly(SchedulingError):
    error_type = "too_early"


class TooLate(SchedulingError):
    error_type = "too_late"


class InvalidTimeFormat(SchedulingError):
    error_type = "invalid_time_format"


# Session state

class StateError(AttendanceError):
    error_type = "state_error"
    status_code = 409


class AlreadyExists(StateError):
    error_type = "already_exists"


class AlreadyClosed(StateError):
    error_type = "already_closed"


class NoOpenSession(StateError):
    error_type = "no_open_session"


class AlreadyOpenElsewhere(StateError):
    error_type = "already_open_elsewhere"


# Excuse workflow

class WorkflowError(AttendanceError):
    error_type = "workflow_error"
    status_code = 409


class NotPending(WorkflowError):
    error_type = "not_pending"


class ExcuseNotAllowed(WorkflowError):
    error_type = "excuse_not_allowed"


# Lookups and permissions

class IdentityNotFound(AttendanceError):
    error_type = "identity_not_found"
    status_code = 404


class ClassNotFound(AttendanceError):
    error_type = "class_not_found"
    status_code = 404


class NotEnrolledInClass(AttendanceError):
    error_type = "not_enrolled_in_class"
    status_code = 403


class PermissionDenied(AttendanceError):
    error_type = "permission_denied"
    status_code = 403


class JoinCodeUnavailable(AttendanceError):
    error_type = "join_code_unavailable"
    status_code = 409
