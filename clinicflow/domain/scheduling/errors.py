"""Scheduling domain errors

Every error carries a message that can be shown to the end user as-is, and a
short ``code`` the API returns so the UI can tell expected contention
("pick another slot") apart from system failures ("try again later").
"""

from typing import Optional


class SchedulingError(Exception):
    """Base class for all recall/reschedule failures"""

    code = "scheduling_error"
    default_message = "Something went wrong while scheduling"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidDateError(SchedulingError, ValueError):
    code = "invalid_date"
    default_message = "Invalid date"


class UnknownTreatmentError(SchedulingError, ValueError):
    code = "unknown_treatment"
    default_message = "Unknown treatment type"


class NotFoundError(SchedulingError):
    code = "not_found"
    default_message = "Record not found"


class SlotUnavailableError(SchedulingError):
    code = "slot_unavailable"
    default_message = "This time slot is no longer available. Please select another time."


class InvalidRecallTransitionError(SchedulingError):
    code = "invalid_transition"
    default_message = "This recall can no longer be changed"
