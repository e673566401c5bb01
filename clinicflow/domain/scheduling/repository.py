"""Scheduling repository - Database operations behind the scheduling protocols"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import EMERGENCY_SLOT_TIMES
from ...models import (
    Appointment,
    AppointmentSlot,
    Dentist,
    Patient,
    PatientRecall,
    RescheduleSuggestionLog,
)
from .errors import NotFoundError, SlotUnavailableError
from .schemas import (
    AppointmentRef,
    AvailabilitySlot,
    PatientModifiers,
    RecallRecord,
    RecallSlot,
    RescheduleSuggestion,
)
from .time_calculator import clinic_day_grid, format_slot_time, parse_slot_time

logger = logging.getLogger(__name__)

# RecallRecord field -> PatientRecall column
RECALL_COLUMNS = {
    "sourceAppointmentId": "source_appointment_id",
    "patientId": "patient_id",
    "dentistId": "dentist_id",
    "treatmentKey": "treatment_key",
    "treatmentLabel": "treatment_label",
    "dueDate": "due_date",
    "suggestedSlots": "suggested_slots",
    "bookedAppointmentId": "booked_appointment_id",
    "status": "status",
    "snoozeUntil": "snooze_until",
}

# AppointmentRef field -> Appointment column
APPOINTMENT_COLUMNS = {
    "patientId": "patient_id",
    "dentistId": "dentist_id",
    "appointmentDateTime": "appointment_date",
    "reason": "reason",
    "notes": "notes",
    "status": "status",
    "urgency": "urgency",
    "durationMinutes": "duration_minutes",
}


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timezone-aware columns back naive; everything stored is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _slots_to_json(slots: Sequence[Any]) -> List[Dict[str, str]]:
    result = []
    for slot in slots:
        if not isinstance(slot, RecallSlot):
            slot = RecallSlot.model_validate(slot)
        result.append({"date": slot.date.isoformat(), "time": slot.time})
    return result


def recall_to_record(row: PatientRecall) -> RecallRecord:
    return RecallRecord(
        id=row.id,
        sourceAppointmentId=row.source_appointment_id,
        patientId=row.patient_id,
        dentistId=row.dentist_id,
        treatmentKey=row.treatment_key,
        treatmentLabel=row.treatment_label,
        dueDate=row.due_date,
        suggestedSlots=[RecallSlot.model_validate(s) for s in (row.suggested_slots or [])],
        bookedAppointmentId=row.booked_appointment_id,
        status=row.status,
        snoozeUntil=row.snooze_until,
        createdAt=row.created_at,
        updatedAt=row.updated_at,
    )


def appointment_to_ref(row: Appointment) -> AppointmentRef:
    return AppointmentRef(
        id=row.id,
        patientId=row.patient_id,
        dentistId=row.dentist_id,
        appointmentDateTime=_as_utc(row.appointment_date),
        reason=row.reason,
        status=row.status,
        urgency=row.urgency,
        durationMinutes=row.duration_minutes,
    )


def slot_to_availability(row: AppointmentSlot) -> AvailabilitySlot:
    return AvailabilitySlot(
        dentistId=row.dentist_id,
        date=row.slot_date,
        time=format_slot_time(row.slot_time),
        isAvailable=row.is_available,
        emergencyOnly=row.emergency_only,
    )


class SchedulingRepository:
    """SQLAlchemy implementation of every store protocol the scheduling services use"""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------

    async def generate_daily_slots(self, dentist_id: str, slot_date: date) -> None:
        exists = (
            self.db.query(AppointmentSlot.id)
            .filter(AppointmentSlot.dentist_id == dentist_id, AppointmentSlot.slot_date == slot_date)
            .first()
        )
        if exists:
            return

        emergency = {format_slot_time(t) for t in EMERGENCY_SLOT_TIMES}
        for slot_time in clinic_day_grid():
            self.db.add(
                AppointmentSlot(
                    dentist_id=dentist_id,
                    slot_date=slot_date,
                    slot_time=parse_slot_time(slot_time),
                    is_available=True,
                    emergency_only=slot_time in emergency,
                )
            )
        try:
            self.db.commit()
        except IntegrityError:
            # Another request generated the same day first
            self.db.rollback()
            logger.debug(f"Slots for dentist {dentist_id} on {slot_date} already generated")

    async def query_availability_slots(
        self, dentist_id: str, start_date: date, end_date: date
    ) -> List[AvailabilitySlot]:
        rows = (
            self.db.query(AppointmentSlot)
            .filter(
                AppointmentSlot.dentist_id == dentist_id,
                AppointmentSlot.slot_date >= start_date,
                AppointmentSlot.slot_date <= end_date,
            )
            .order_by(AppointmentSlot.slot_date, AppointmentSlot.slot_time)
            .all()
        )
        return [slot_to_availability(row) for row in rows]

    async def reserve_slot(
        self,
        dentist_id: str,
        slot_date: date,
        slot_time: str,
        appointment_id: str,
        holder: Optional[str] = None,
    ) -> None:
        # Emergency-only capacity is never claimable from a booking flow
        claimable = and_(
            AppointmentSlot.is_available.is_(True), AppointmentSlot.emergency_only.is_(False)
        )
        if holder:
            claimable = or_(claimable, AppointmentSlot.appointment_id == holder)

        # Single conditional UPDATE: the row count decides who won the race
        updated = (
            self.db.query(AppointmentSlot)
            .filter(
                AppointmentSlot.dentist_id == dentist_id,
                AppointmentSlot.slot_date == slot_date,
                AppointmentSlot.slot_time == parse_slot_time(slot_time),
                claimable,
            )
            .update(
                {AppointmentSlot.is_available: False, AppointmentSlot.appointment_id: appointment_id},
                synchronize_session=False,
            )
        )
        self.db.commit()
        if updated == 0:
            raise SlotUnavailableError()

    async def release_slot(self, appointment_id: str) -> None:
        (
            self.db.query(AppointmentSlot)
            .filter(AppointmentSlot.appointment_id == appointment_id)
            .update(
                {AppointmentSlot.is_available: True, AppointmentSlot.appointment_id: None},
                synchronize_session=False,
            )
        )
        self.db.commit()

    async def list_active_dentists(self) -> List[Dict[str, str]]:
        dentists = (
            self.db.query(Dentist)
            .filter(Dentist.is_active.is_(True))
            .order_by(Dentist.last_name, Dentist.first_name)
            .all()
        )
        return [{"id": d.id, "name": d.full_name} for d in dentists]

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------

    def _appointment_row(self, appointment_id: str) -> Appointment:
        row = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if row is None:
            raise NotFoundError("Appointment not found")
        return row

    @staticmethod
    def _appointment_values(fields: Mapping[str, Any]) -> Dict[str, Any]:
        values = {}
        for key, value in fields.items():
            column = APPOINTMENT_COLUMNS.get(key)
            if column is None:
                raise ValueError(f"Unknown appointment field: {key}")
            if column == "appointment_date":
                value = _as_utc(value)
            values[column] = value
        return values

    async def insert_appointment(self, fields: Mapping[str, Any]) -> AppointmentRef:
        row = Appointment(**self._appointment_values(fields))
        self.db.add(row)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(row)
        return appointment_to_ref(row)

    async def update_appointment(self, appointment_id: str, fields: Mapping[str, Any]) -> AppointmentRef:
        row = self._appointment_row(appointment_id)
        for column, value in self._appointment_values(fields).items():
            setattr(row, column, value)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(row)
        return appointment_to_ref(row)

    async def get_appointment(self, appointment_id: str) -> Optional[AppointmentRef]:
        row = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        return appointment_to_ref(row) if row else None

    async def list_dentist_appointments(
        self, dentist_id: str, start: datetime, end: datetime
    ) -> List[AppointmentRef]:
        rows = (
            self.db.query(Appointment)
            .filter(
                Appointment.dentist_id == dentist_id,
                Appointment.appointment_date >= _as_utc(start),
                Appointment.appointment_date <= _as_utc(end),
                Appointment.status != "cancelled",
            )
            .order_by(Appointment.appointment_date)
            .all()
        )
        return [appointment_to_ref(row) for row in rows]

    async def log_reschedule_suggestions(
        self, appointment_id: str, reason: str, suggestions: Sequence[RescheduleSuggestion]
    ) -> None:
        self.db.add(
            RescheduleSuggestionLog(
                original_appointment_id=appointment_id,
                reason=reason,
                suggested_slots=[
                    {
                        "date": s.date.isoformat(),
                        "time": s.slot.time,
                        "dentistId": s.dentistId,
                        "score": s.slot.score,
                        "reasons": s.slot.reasons,
                    }
                    for s in suggestions
                ],
            )
        )
        self.db.commit()

    async def mark_reschedule_accepted(self, appointment_id: str, accepted_slot: datetime) -> None:
        log = (
            self.db.query(RescheduleSuggestionLog)
            .filter(
                RescheduleSuggestionLog.original_appointment_id == appointment_id,
                RescheduleSuggestionLog.accepted_slot.is_(None),
            )
            .order_by(RescheduleSuggestionLog.created_at.desc(), RescheduleSuggestionLog.id.desc())
            .first()
        )
        if log is None:
            return
        log.accepted_slot = _as_utc(accepted_slot)
        log.accepted_at = datetime.now(timezone.utc)
        self.db.commit()

    # ------------------------------------------------------------------
    # Recalls
    # ------------------------------------------------------------------

    def _recall_row(self, recall_id: str) -> PatientRecall:
        row = self.db.query(PatientRecall).filter(PatientRecall.id == recall_id).first()
        if row is None:
            raise NotFoundError("Recall not found")
        return row

    async def insert_recall(self, recall: RecallRecord) -> RecallRecord:
        row = PatientRecall(
            id=recall.id,
            source_appointment_id=recall.sourceAppointmentId,
            patient_id=recall.patientId,
            dentist_id=recall.dentistId,
            treatment_key=recall.treatmentKey,
            treatment_label=recall.treatmentLabel,
            due_date=recall.dueDate,
            suggested_slots=_slots_to_json(recall.suggestedSlots),
            booked_appointment_id=recall.bookedAppointmentId,
            status=recall.status,
            snooze_until=recall.snoozeUntil,
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return recall_to_record(row)

    async def update_recall(self, recall_id: str, fields: Mapping[str, Any]) -> RecallRecord:
        row = self._recall_row(recall_id)
        for key, value in fields.items():
            column = RECALL_COLUMNS.get(key)
            if column is None:
                raise ValueError(f"Unknown recall field: {key}")
            if column == "suggested_slots":
                value = _slots_to_json(value)
            setattr(row, column, value)

        # Status/field invariants are checked before anything is written
        try:
            recall_to_record(row)
        except ValidationError:
            self.db.rollback()
            raise
        self.db.commit()
        self.db.refresh(row)
        logger.debug(f"Recall {recall_id} updated: {sorted(fields)} -> {row.status}")
        return recall_to_record(row)

    async def lookup_recall_by_id(self, recall_id: str) -> Optional[RecallRecord]:
        row = self.db.query(PatientRecall).filter(PatientRecall.id == recall_id).first()
        return recall_to_record(row) if row else None

    async def list_recalls_by_status(self, status: str) -> List[RecallRecord]:
        rows = (
            self.db.query(PatientRecall)
            .filter(PatientRecall.status == status)
            .order_by(PatientRecall.due_date)
            .all()
        )
        return [recall_to_record(row) for row in rows]

    # ------------------------------------------------------------------
    # Patients
    # ------------------------------------------------------------------

    async def lookup_patient_user_id(self, patient_id: str) -> Optional[str]:
        patient = self.db.query(Patient).filter(Patient.id == patient_id).first()
        return patient.user_id if patient else None

    async def get_patient_modifiers(self, patient_id: str) -> Optional[PatientModifiers]:
        patient = self.db.query(Patient).filter(Patient.id == patient_id).first()
        if patient is None:
            return None
        return PatientModifiers(
            isSmoker=bool(patient.is_smoker),
            perioRisk=patient.perio_risk,
            isPediatric=bool(patient.is_pediatric),
            preferredDays=patient.preferred_days or [],
            preferredTimeBands=patient.preferred_time_bands or [],
        )
