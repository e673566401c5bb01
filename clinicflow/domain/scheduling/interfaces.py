"""
Collaborator interfaces used by the recall and reschedule services.

The services only ever talk to these protocols, so the storage technology
behind them can change without touching the scheduling logic.
``SchedulingRepository`` implements the store protocols on SQLAlchemy.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from .schemas import (
    AppointmentRef,
    AvailabilitySlot,
    PatientModifiers,
    RecallRecord,
    RescheduleSuggestion,
)


class SlotStore(Protocol):
    async def generate_daily_slots(self, dentist_id: str, slot_date: date) -> None:
        """Ensure availability rows exist for the dentist/day; safe to repeat."""

    async def query_availability_slots(
        self, dentist_id: str, start_date: date, end_date: date
    ) -> List[AvailabilitySlot]:
        """All slot rows for the dentist between the two dates, inclusive."""

    async def reserve_slot(
        self,
        dentist_id: str,
        slot_date: date,
        slot_time: str,
        appointment_id: str,
        holder: Optional[str] = None,
    ) -> None:
        """Atomically bind a free slot (or one held by ``holder``) to ``appointment_id``.

        Raises SlotUnavailableError when the slot is taken, missing or emergency-only.
        """

    async def release_slot(self, appointment_id: str) -> None:
        """Free every slot bound to ``appointment_id``; a no-op when none is."""

    async def list_active_dentists(self) -> List[Dict[str, str]]:
        """``[{"id": ..., "name": ...}]`` for every active practitioner."""


class AppointmentStore(Protocol):
    async def insert_appointment(self, fields: Mapping[str, Any]) -> AppointmentRef:
        ...

    async def update_appointment(self, appointment_id: str, fields: Mapping[str, Any]) -> AppointmentRef:
        ...

    async def get_appointment(self, appointment_id: str) -> Optional[AppointmentRef]:
        ...

    async def list_dentist_appointments(
        self, dentist_id: str, start: datetime, end: datetime
    ) -> List[AppointmentRef]:
        """Non-cancelled appointments of a dentist in [start, end]."""

    async def log_reschedule_suggestions(
        self, appointment_id: str, reason: str, suggestions: Sequence[RescheduleSuggestion]
    ) -> None:
        ...

    async def mark_reschedule_accepted(self, appointment_id: str, accepted_slot: datetime) -> None:
        ...


class RecallStore(Protocol):
    async def insert_recall(self, recall: RecallRecord) -> RecallRecord:
        ...

    async def update_recall(self, recall_id: str, fields: Mapping[str, Any]) -> RecallRecord:
        """Apply camelCase RecallRecord field updates and return the stored record."""

    async def lookup_recall_by_id(self, recall_id: str) -> Optional[RecallRecord]:
        ...

    async def list_recalls_by_status(self, status: str) -> List[RecallRecord]:
        ...


class PatientDirectory(Protocol):
    async def lookup_patient_user_id(self, patient_id: str) -> Optional[str]:
        ...

    async def get_patient_modifiers(self, patient_id: str) -> Optional[PatientModifiers]:
        ...


class SchedulingStore(SlotStore, AppointmentStore, RecallStore, PatientDirectory, Protocol):
    """Everything the scheduling services need from storage"""


class Notifier(Protocol):
    async def send_notification(
        self,
        user_id: str,
        title: str,
        body: str,
        category: str,
        severity: str = "normal",
        deep_link: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


class AnalyticsSink(Protocol):
    def track(self, event_name: str, dentist_id: Optional[str], payload: Dict[str, Any]) -> None:
        """Record an event without blocking the caller."""
