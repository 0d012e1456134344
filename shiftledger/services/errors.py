"""
Error taxonomy for attendance reconciliation.

Clock-in/out outcomes are reported as ClockIssue values tagged with a
ClockIssueCode; they are never raised. Timesheet and budget operations
raise ReconciliationError subclasses which the routers map to HTTP codes.
"""
from enum import Enum


class ClockIssueCode(str, Enum):
    STAFF_NOT_FOUND = "staff_not_found"
    APPOINTMENT_NOT_FOUND = "appointment_not_found"
    OVERLAPPING_SHIFT = "overlapping_shift"
    INVALID_COORDINATES = "invalid_coordinates"
    GPS_VIOLATION = "gps_violation"
    GPS_WARNING = "gps_warning"
    GPS_ACCURACY_WARNING = "gps_accuracy_warning"
    NO_ACTIVE_CLOCK_IN = "no_active_clock_in"
    INVALID_TIMESTAMP = "invalid_timestamp"
    IMPLAUSIBLE_DURATION_WARNING = "implausible_duration_warning"
    PERSISTENCE_FAILURE = "persistence_failure"


class ReconciliationError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StaffNotFound(ReconciliationError):
    status_code = 404


class TimesheetNotFound(ReconciliationError):
    status_code = 404


class TimesheetExists(ReconciliationError):
    status_code = 409


class InvalidTimesheetTransition(ReconciliationError):
    status_code = 409


class RejectionReasonRequired(ReconciliationError):
    status_code = 400


class TimesheetNotApproved(ReconciliationError):
    status_code = 409
