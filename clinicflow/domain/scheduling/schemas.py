"""Scheduling domain schemas - Pydantic models for validation"""

import datetime as dt
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .time_calculator import format_slot_time

RECALL_STATUSES = ("suggested", "snoozed", "declined", "booked", "expired")
TERMINAL_RECALL_STATUSES = ("booked", "declined")
PERIO_RISK_LEVELS = ("low", "medium", "high")
TIME_BANDS = ("morning", "afternoon", "evening")

RecallStatus = Literal["suggested", "snoozed", "declined", "booked", "expired"]
RescheduleReason = Literal[
    "dentist_vacation", "dentist_cancelled", "patient_requested", "emergency"
]


def _normalize_time(v):
    if v is None:
        return v
    return format_slot_time(v)


class PatientModifiers(BaseModel):
    """Risk factors and booking preferences supplied with a recall"""

    isSmoker: bool = False
    perioRisk: Optional[str] = None  # "low" | "medium" | "high"
    isPediatric: bool = False
    preferredDays: List[int] = Field(default_factory=list)  # 0=Sunday .. 6=Saturday
    preferredTimeBands: List[str] = Field(default_factory=list)

    @field_validator("perioRisk")
    @classmethod
    def validate_perio_risk(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if v not in PERIO_RISK_LEVELS:
            raise ValueError("perioRisk must be 'low', 'medium' or 'high'")
        return v

    @field_validator("preferredDays")
    @classmethod
    def validate_days(cls, v: List[int]) -> List[int]:
        for day in v:
            if day < 0 or day > 6:
                raise ValueError("preferredDays must contain values between 0 and 6")
        return sorted(set(v))

    @field_validator("preferredTimeBands")
    @classmethod
    def validate_bands(cls, v: List[str]) -> List[str]:
        bands = [b.strip().lower() for b in v]
        for band in bands:
            if band not in TIME_BANDS:
                raise ValueError("preferredTimeBands must be morning, afternoon or evening")
        return bands


class RecallSlot(BaseModel):
    """A (date, time) candidate; compared and hashed by value"""

    model_config = ConfigDict(frozen=True)

    date: dt.date
    time: str  # HH:MM clinic-local

    @field_validator("time", mode="before")
    @classmethod
    def normalize_time(cls, v):
        return _normalize_time(v)


class AvailabilitySlot(BaseModel):
    dentistId: str
    date: dt.date
    time: str
    isAvailable: bool = True
    emergencyOnly: bool = False

    @field_validator("time", mode="before")
    @classmethod
    def normalize_time(cls, v):
        return _normalize_time(v)


class AppointmentRef(BaseModel):
    id: str
    patientId: str
    dentistId: str
    appointmentDateTime: dt.datetime  # UTC
    reason: Optional[str] = None
    status: str = "confirmed"
    urgency: str = "medium"
    durationMinutes: int = 60


class RecallRecord(BaseModel):
    id: str
    sourceAppointmentId: Optional[str] = None
    patientId: str
    dentistId: Optional[str] = None
    treatmentKey: str
    treatmentLabel: str
    dueDate: dt.date
    suggestedSlots: List[RecallSlot] = Field(default_factory=list, max_length=3)
    bookedAppointmentId: Optional[str] = None
    status: RecallStatus = "suggested"
    snoozeUntil: Optional[dt.date] = None
    createdAt: Optional[dt.datetime] = None
    updatedAt: Optional[dt.datetime] = None

    @model_validator(mode="after")
    def check_status_fields(self):
        if (self.bookedAppointmentId is not None) != (self.status == "booked"):
            raise ValueError("bookedAppointmentId must be set exactly when status is 'booked'")
        if (self.snoozeUntil is not None) != (self.status == "snoozed"):
            raise ValueError("snoozeUntil must be set exactly when status is 'snoozed'")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RECALL_STATUSES


class ScoredSlot(BaseModel):
    time: str
    score: int = Field(ge=0, le=100)
    reasons: List[str] = Field(default_factory=list)


class RescheduleSuggestion(BaseModel):
    rank: int = Field(ge=1)
    date: dt.date
    dentistId: str
    slot: ScoredSlot


class RescheduleOptions(BaseModel):
    reason: RescheduleReason = "patient_requested"
    searchDays: int = Field(default=14, ge=1, le=90)
    sameDentist: bool = True
    minScore: int = Field(default=60, ge=0, le=100)
    maxResults: Optional[int] = Field(default=None, ge=1)


class RescheduleResult(BaseModel):
    success: bool
    error: Optional[str] = None
    errorCode: Optional[str] = None


class BulkRescheduleResult(BaseModel):
    total: int
    processed: int
    suggestions: Dict[str, List[RescheduleSuggestion]] = Field(default_factory=dict)


class AlternativeDentist(BaseModel):
    dentistId: str
    name: str
    availableSlots: int


# ============================================================================
# REQUEST / RESPONSE BODIES
# ============================================================================


class CreateRecallRequest(BaseModel):
    patientId: str
    dentistId: Optional[str] = None
    sourceAppointmentId: Optional[str] = None
    treatmentKey: str
    baseDate: Optional[dt.date] = None  # Defaults to clinic-local today
    modifiers: Optional[PatientModifiers] = None


class BookSlotRequest(BaseModel):
    date: dt.date
    time: str

    @field_validator("time", mode="before")
    @classmethod
    def normalize_time(cls, v):
        return _normalize_time(v)


class SnoozeRequest(BaseModel):
    days: int = Field(ge=1, le=365)


class RegenerateSlotsRequest(BaseModel):
    modifiers: Optional[PatientModifiers] = None


class BookingResponse(BaseModel):
    appointmentId: str


class AcceptRescheduleRequest(BaseModel):
    date: dt.date
    time: str
    dentistId: Optional[str] = None

    @field_validator("time", mode="before")
    @classmethod
    def normalize_time(cls, v):
        return _normalize_time(v)


class SendSuggestionsRequest(BaseModel):
    suggestions: List[RescheduleSuggestion]


class BulkRescheduleRequest(BaseModel):
    startDate: dt.date
    endDate: dt.date
    reason: RescheduleReason = "dentist_vacation"

    @model_validator(mode="after")
    def check_range(self):
        if self.endDate < self.startDate:
            raise ValueError("endDate must not be before startDate")
        return self


class ClinicSlotsResponse(BaseModel):
    date: dt.date
    timezone: str
    slots: List[str]
