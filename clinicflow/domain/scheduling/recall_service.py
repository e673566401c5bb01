"""
Recall lifecycle

State machine for patient recalls:

    suggested ──book──────▶ booked     (terminal)
        │ ─────decline───▶ declined   (terminal)
        └──────snooze────▶ snoozed

Snoozed recalls come back to ``suggested`` through the recall sweep, never
from inside this service. Any recall that is not booked or declined can have
its suggested slots regenerated without changing status.

Booking is the one place where ordering matters:

1. reserve the slot under a hold token unique to this call (emergency-only
   slots and slots inside the booking lead time are refused)
2. insert the appointment (on failure: release the hold, re-raise)
3. rebind the slot from the hold token to the real appointment id
4. mark the recall booked

Notifications and analytics after that are best effort.
"""

import logging
import uuid
from datetime import date, timedelta
from typing import Iterable, Optional
from urllib.parse import urlencode

from ...config import DEFAULT_APPOINTMENT_DURATION, FRONTEND_URL
from .availability_service import generate_suggested_slots_around_date
from .booking import BookingService
from .errors import InvalidRecallTransitionError, NotFoundError
from .recall_policy import compute_due_date, get_treatment_policy
from .schemas import TERMINAL_RECALL_STATUSES, PatientModifiers, RecallRecord, RecallSlot
from .time_calculator import clinic_today, create_appointment_datetime, format_clinic_time

logger = logging.getLogger(__name__)


def recall_deep_link(recall_id: str, slot: Optional[RecallSlot] = None) -> str:
    url = f"{FRONTEND_URL.rstrip('/')}/recalls/{recall_id}/book"
    if slot is None:
        return url
    return f"{url}?{urlencode({'date': slot.date.isoformat(), 'time': slot.time})}"


class RecallService(BookingService):
    """Creates recalls and moves them through their lifecycle"""

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_recall(self, recall_id: str) -> RecallRecord:
        recall = await self.store.lookup_recall_by_id(recall_id)
        if recall is None:
            raise NotFoundError("Recall not found")
        return recall

    async def _resolve_modifiers(
        self, patient_id: str, modifiers: Optional[PatientModifiers]
    ) -> PatientModifiers:
        if modifiers is not None:
            return modifiers
        stored = await self.store.get_patient_modifiers(patient_id)
        return stored or PatientModifiers()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_recall(
        self,
        patient_id: str,
        treatment_key: str,
        dentist_id: Optional[str] = None,
        source_appointment_id: Optional[str] = None,
        base_date: Optional[date] = None,
        modifiers: Optional[PatientModifiers] = None,
    ) -> RecallRecord:
        policy = get_treatment_policy(treatment_key)
        modifiers = await self._resolve_modifiers(patient_id, modifiers)
        base_date = base_date or clinic_today(self.now())
        due_date = compute_due_date(base_date, policy.key, modifiers)

        slots = []
        if dentist_id:
            slots = await generate_suggested_slots_around_date(
                self.store, dentist_id, due_date, modifiers, now=self.now()
            )

        recall = await self.store.insert_recall(
            RecallRecord(
                id=str(uuid.uuid4()),
                sourceAppointmentId=source_appointment_id,
                patientId=patient_id,
                dentistId=dentist_id,
                treatmentKey=policy.key,
                treatmentLabel=policy.label,
                dueDate=due_date,
                suggestedSlots=slots,
                status="suggested",
            )
        )
        logger.info(
            f"🔔 Recall {recall.id} created for patient {patient_id}: {policy.key} due {due_date} "
            f"({len(slots)} suggested slot(s))"
        )

        first_slot = slots[0] if slots else None
        body = f"Your {policy.label.lower()} is due on {due_date.strftime('%A %d %B %Y')}."
        if first_slot:
            body += f" We kept {first_slot.date.strftime('%A %d %B')} at {first_slot.time} for you - tap to book."
        await self._notify_patient(
            patient_id,
            title="Time for your next visit",
            body=body,
            category="recall",
            deep_link=recall_deep_link(recall.id, first_slot),
            metadata={"recallId": recall.id, "dueDate": due_date.isoformat()},
        )
        self._track(
            "recall_created",
            dentist_id,
            {"recallId": recall.id, "treatmentKey": policy.key, "slotCount": len(slots)},
        )
        return recall

    async def book_suggested_slot(self, recall_id: str, slot: RecallSlot) -> str:
        """Book ``slot`` for the recall and return the new appointment id"""
        recall = await self.get_recall(recall_id)
        self._require_status(recall, ("suggested",), "book")
        if not recall.dentistId:
            raise InvalidRecallTransitionError("This recall has no dentist to book with")

        # Raises SlotUnavailableError when the slot is taken, emergency-only or too soon
        hold_id = await self._hold_slot(recall.dentistId, slot.date, slot.time)

        try:
            appointment = await self.store.insert_appointment(
                {
                    "patientId": recall.patientId,
                    "dentistId": recall.dentistId,
                    "appointmentDateTime": create_appointment_datetime(slot.date, slot.time),
                    "reason": recall.treatmentLabel,
                    "status": "confirmed",
                    "urgency": "low",
                    "durationMinutes": DEFAULT_APPOINTMENT_DURATION,
                    "notes": f"Booked from recall {recall.id}",
                }
            )
        except Exception:
            await self._release_hold(hold_id)
            raise

        try:
            await self.store.reserve_slot(
                recall.dentistId, slot.date, slot.time, appointment.id, holder=hold_id
            )
        except Exception:
            # The hold token still owns the slot, so it cannot be double booked
            logger.exception(
                f"❌ Could not rebind slot {slot.date} {slot.time} from {hold_id} to appointment {appointment.id}"
            )

        await self.store.update_recall(
            recall.id,
            {"status": "booked", "bookedAppointmentId": appointment.id, "snoozeUntil": None},
        )
        logger.info(f"✅ Recall {recall.id} booked as appointment {appointment.id}")

        when = format_clinic_time(appointment.appointmentDateTime, "%A %d %B %Y at %H:%M")
        await self._notify_patient(
            recall.patientId,
            title="Appointment confirmed",
            body=f"Your {recall.treatmentLabel.lower()} is booked for {when}.",
            category="appointment_confirmed",
            metadata={"recallId": recall.id, "appointmentId": appointment.id},
        )
        self._track(
            "recall_booked",
            recall.dentistId,
            {"recallId": recall.id, "appointmentId": appointment.id},
        )
        return appointment.id

    async def snooze_recall(self, recall_id: str, days: int) -> RecallRecord:
        if days < 1:
            raise ValueError("Snooze must last at least one day")
        recall = await self.get_recall(recall_id)
        self._require_status(recall, ("suggested",), "snooze")

        snooze_until = clinic_today(self.now()) + timedelta(days=days)
        updated = await self.store.update_recall(
            recall.id, {"status": "snoozed", "snoozeUntil": snooze_until}
        )
        logger.info(f"😴 Recall {recall.id} snoozed until {snooze_until}")
        self._track("recall_snoozed", recall.dentistId, {"recallId": recall.id, "days": days})
        return updated

    async def decline_recall(self, recall_id: str) -> RecallRecord:
        recall = await self.get_recall(recall_id)
        self._require_status(recall, ("suggested",), "decline")

        updated = await self.store.update_recall(recall.id, {"status": "declined"})
        logger.info(f"🚫 Recall {recall.id} declined")
        self._track("recall_declined", recall.dentistId, {"recallId": recall.id})
        return updated

    async def regenerate_slots(
        self, recall_id: str, modifiers: Optional[PatientModifiers] = None
    ) -> RecallRecord:
        """Recompute suggested slots; status is left untouched"""
        recall = await self.get_recall(recall_id)
        if recall.is_terminal:
            raise InvalidRecallTransitionError(
                f"Cannot regenerate slots for a recall that is {recall.status}"
            )

        slots = []
        if recall.dentistId:
            modifiers = await self._resolve_modifiers(recall.patientId, modifiers)
            # An overdue recall looks for slots from today onwards
            anchor = max(recall.dueDate, clinic_today(self.now()))
            slots = await generate_suggested_slots_around_date(
                self.store, recall.dentistId, anchor, modifiers, now=self.now()
            )

        updated = await self.store.update_recall(recall.id, {"suggestedSlots": slots})
        self._track(
            "recall_slots_regenerated",
            recall.dentistId,
            {"recallId": recall.id, "slotCount": len(slots)},
        )
        return updated

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_status(recall: RecallRecord, allowed: Iterable[str], action: str) -> None:
        if recall.status not in allowed:
            if recall.status in TERMINAL_RECALL_STATUSES:
                raise InvalidRecallTransitionError(
                    f"This recall is already {recall.status} and can no longer be changed"
                )
            raise InvalidRecallTransitionError(f"Cannot {action} a recall that is {recall.status}")

