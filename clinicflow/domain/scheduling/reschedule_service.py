"""
Reschedule assistant

Finds, scores and ranks alternative slots for an appointment that has to
move, and commits the patient's pick with the same reserve / update /
rebind discipline used for recall bookings.
"""

import logging
from datetime import date, time, timedelta
from typing import Any, Dict, List, Optional, Sequence

from .availability_service import date_range, ensure_slots_exist, filter_bookable
from .booking import BookingService
from .errors import NotFoundError, SchedulingError
from .schemas import (
    AlternativeDentist,
    AppointmentRef,
    AvailabilitySlot,
    BulkRescheduleResult,
    RescheduleOptions,
    RescheduleResult,
    RescheduleSuggestion,
    ScoredSlot,
)
from .time_calculator import (
    create_appointment_datetime,
    format_clinic_time,
    parse_slot_time,
    utc_to_clinic_time,
)

logger = logging.getLogger(__name__)

BASE_SCORE = 50
BULK_SEARCH_DAYS = 21
SYSTEM_ERROR_MESSAGE = "Failed to reschedule appointment. Please try again later."


def _minutes_of_day(value) -> int:
    t = parse_slot_time(value)
    return t.hour * 60 + t.minute


def score_slot(
    slot_date: date,
    slot_time: str,
    original_date: date,
    original_time: time,
    slot_dentist_id: str,
    original_dentist_id: str,
    same_dentist: bool = True,
) -> ScoredSlot:
    """
    Score a candidate slot against the appointment it replaces.

    Starts at 50 and moves with time-of-day proximity, dentist continuity and
    how soon after the original date the slot is. The reasons list is shown
    to the patient next to each option.
    """
    score = BASE_SCORE
    reasons: List[str] = []

    time_diff = abs(_minutes_of_day(slot_time) - _minutes_of_day(original_time))
    if time_diff == 0:
        score += 25
        reasons.append("Same time as your original appointment")
    elif time_diff <= 60:
        score += 20
        reasons.append("Similar time of day")
    elif time_diff <= 180:
        score += 5
        reasons.append("Close to your original time")
    else:
        score -= 10
        reasons.append("Different time of day")

    if slot_dentist_id == original_dentist_id:
        score += 15
        reasons.append("Same dentist")
    elif not same_dentist:
        score -= 5
        reasons.append("Different dentist")

    days_later = (slot_date - original_date).days
    if days_later <= 3:
        score += 10
        reasons.append("Available soon")
    elif days_later <= 7:
        score += 5
        reasons.append("Within a week")
    elif days_later > 10:
        score -= 10
        reasons.append("More than 10 days later")

    return ScoredSlot(time=slot_time, score=max(0, min(100, score)), reasons=reasons)


def rank_suggestions(
    candidates: Sequence[RescheduleSuggestion],
    min_score: int,
    max_results: Optional[int] = None,
) -> List[RescheduleSuggestion]:
    """Drop anything under ``min_score``, order best first and number from 1"""
    kept = [c for c in candidates if c.slot.score >= min_score]
    kept.sort(key=lambda c: (-c.slot.score, c.date, parse_slot_time(c.slot.time)))
    if max_results is not None:
        kept = kept[:max_results]
    return [c.model_copy(update={"rank": i}) for i, c in enumerate(kept, start=1)]


class RescheduleService(BookingService):
    async def _get_appointment(self, appointment_id: str) -> AppointmentRef:
        appointment = await self.store.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found")
        return appointment

    # ------------------------------------------------------------------
    # Finding options
    # ------------------------------------------------------------------

    async def find_reschedule_options(
        self, appointment_id: str, options: Optional[RescheduleOptions] = None
    ) -> List[RescheduleSuggestion]:
        options = options or RescheduleOptions()
        appointment = await self._get_appointment(appointment_id)

        original_local = utc_to_clinic_time(appointment.appointmentDateTime)
        original_date = original_local.date()
        window = date_range(
            original_date + timedelta(days=1), original_date + timedelta(days=options.searchDays)
        )

        if options.sameDentist:
            dentist_ids = [appointment.dentistId]
        else:
            dentist_ids = [d["id"] for d in await self.store.list_active_dentists()]
            if appointment.dentistId not in dentist_ids:
                dentist_ids.insert(0, appointment.dentistId)

        candidates: List[RescheduleSuggestion] = []
        for dentist_id in dentist_ids:
            await ensure_slots_exist(self.store, dentist_id, window)
            rows = await self.store.query_availability_slots(dentist_id, window[0], window[-1])
            for slot in filter_bookable(rows, self.now()):
                candidates.append(
                    RescheduleSuggestion(
                        rank=1,
                        date=slot.date,
                        dentistId=slot.dentistId,
                        slot=score_slot(
                            slot.date,
                            slot.time,
                            original_date,
                            original_local.time(),
                            slot.dentistId,
                            appointment.dentistId,
                            options.sameDentist,
                        ),
                    )
                )

        suggestions = rank_suggestions(candidates, options.minScore, options.maxResults)
        logger.info(
            f"🔁 {len(suggestions)} reschedule option(s) for appointment {appointment_id} "
            f"({options.reason}, {len(candidates)} scored)"
        )

        if suggestions:
            try:
                await self.store.log_reschedule_suggestions(appointment_id, options.reason, suggestions)
            except Exception as e:
                logger.warning(f"⚠️ Could not log reschedule suggestions for {appointment_id}: {e}")
        return suggestions

    # ------------------------------------------------------------------
    # Committing a choice
    # ------------------------------------------------------------------

    async def accept_reschedule_suggestion(
        self,
        appointment_id: str,
        slot_date: date,
        slot_time: str,
        dentist_id: Optional[str] = None,
    ) -> RescheduleResult:
        """
        Move the appointment to the chosen slot.

        Returns a result instead of raising so callers can tell "pick another
        slot" (``slot_unavailable``) from "try again later" (``system_error``).
        """
        try:
            appointment = await self._get_appointment(appointment_id)
            target_dentist = dentist_id or appointment.dentistId
            new_datetime = create_appointment_datetime(slot_date, slot_time)

            hold_id = await self._hold_slot(target_dentist, slot_date, slot_time)

            fields: Dict[str, Any] = {"appointmentDateTime": new_datetime}
            if target_dentist != appointment.dentistId:
                fields["dentistId"] = target_dentist
            try:
                updated = await self.store.update_appointment(appointment.id, fields)
            except Exception:
                await self._release_hold(hold_id)
                raise

            try:
                await self.store.release_slot(appointment.id)
            except Exception:
                logger.exception(f"❌ Could not free the previous slot of appointment {appointment.id}")

            try:
                await self.store.reserve_slot(
                    target_dentist, slot_date, slot_time, appointment.id, holder=hold_id
                )
            except Exception:
                logger.exception(
                    f"❌ Could not rebind slot {slot_date} {slot_time} from {hold_id} to appointment {appointment.id}"
                )
        except SchedulingError as e:
            logger.info(f"⚠️ Reschedule of appointment {appointment_id} refused: {e.message}")
            return RescheduleResult(success=False, error=e.message, errorCode=e.code)
        except Exception:
            logger.exception(f"❌ Reschedule of appointment {appointment_id} failed")
            return RescheduleResult(success=False, error=SYSTEM_ERROR_MESSAGE, errorCode="system_error")

        logger.info(f"✅ Appointment {appointment_id} moved to {slot_date} {slot_time}")

        try:
            await self.store.mark_reschedule_accepted(appointment_id, new_datetime)
        except Exception as e:
            logger.warning(f"⚠️ Could not mark reschedule suggestion accepted for {appointment_id}: {e}")

        when = format_clinic_time(updated.appointmentDateTime, "%A %d %B %Y at %H:%M")
        await self._notify_patient(
            updated.patientId,
            title="Appointment Rescheduled",
            body=f"Your appointment has been rescheduled to {when}.",
            category="appointment_reschedule",
            metadata={"appointmentId": appointment_id, "newDateTime": new_datetime.isoformat()},
        )
        self._track(
            "appointment_rescheduled",
            updated.dentistId,
            {
                "appointmentId": appointment_id,
                "from": appointment.appointmentDateTime.isoformat(),
                "to": new_datetime.isoformat(),
            },
        )
        return RescheduleResult(success=True)

    async def send_reschedule_suggestions(
        self, appointment_id: str, suggestions: Sequence[RescheduleSuggestion]
    ) -> RescheduleResult:
        """Send the patient one notification listing their options"""
        appointment = await self.store.get_appointment(appointment_id)
        if appointment is None:
            return RescheduleResult(success=False, error="Appointment not found", errorCode="not_found")

        lines = [
            f"{i}. {s.date.strftime('%A, %B')} {s.date.day} at {s.slot.time}"
            for i, s in enumerate(suggestions, start=1)
        ]
        body = (
            "Your appointment needs to be rescheduled. Here are some suggested times:\n\n"
            + "\n".join(lines)
            + "\n\nPlease contact us to confirm."
        )
        try:
            user_id = await self.store.lookup_patient_user_id(appointment.patientId)
            if not user_id:
                return RescheduleResult(
                    success=False, error="Patient has no account to notify", errorCode="not_found"
                )
            await self.notifier.send_notification(
                user_id,
                "Appointment Rescheduling Options",
                body,
                "appointment_reschedule",
                "high",
                None,
                {
                    "appointmentId": appointment_id,
                    "suggestions": [
                        {"date": s.date.isoformat(), "time": s.slot.time, "dentistId": s.dentistId}
                        for s in suggestions
                    ],
                },
            )
        except Exception as e:
            logger.error(f"❌ Failed to send reschedule suggestions for {appointment_id}: {e}")
            return RescheduleResult(
                success=False, error="Failed to send notification", errorCode="system_error"
            )
        return RescheduleResult(success=True)

    # ------------------------------------------------------------------
    # Dentist-side helpers
    # ------------------------------------------------------------------

    async def bulk_reschedule_for_dentist(
        self,
        dentist_id: str,
        start_date: date,
        end_date: date,
        reason: str = "dentist_vacation",
    ) -> BulkRescheduleResult:
        """Reschedule options for every appointment a dentist has between two dates"""
        start = create_appointment_datetime(start_date, "00:00")
        end = create_appointment_datetime(end_date + timedelta(days=1), "00:00") - timedelta(seconds=1)
        appointments = await self.store.list_dentist_appointments(dentist_id, start, end)

        result = BulkRescheduleResult(total=len(appointments), processed=0)
        options = RescheduleOptions(reason=reason, searchDays=BULK_SEARCH_DAYS)
        for appointment in appointments:
            try:
                suggestions = await self.find_reschedule_options(appointment.id, options)
            except SchedulingError as e:
                logger.warning(f"⚠️ Skipping appointment {appointment.id} in bulk reschedule: {e.message}")
                continue
            result.suggestions[appointment.id] = suggestions
            result.processed += 1

        logger.info(
            f"📦 Bulk reschedule for dentist {dentist_id} {start_date}..{end_date}: "
            f"{result.processed}/{result.total} processed"
        )
        self._track(
            "bulk_reschedule",
            dentist_id,
            {"reason": reason, "total": result.total, "processed": result.processed},
        )
        return result

    async def find_alternative_dentists(
        self, original_dentist_id: str, on_date: date
    ) -> List[AlternativeDentist]:
        alternatives: List[AlternativeDentist] = []
        for dentist in await self.store.list_active_dentists():
            if dentist["id"] == original_dentist_id:
                continue
            await ensure_slots_exist(self.store, dentist["id"], [on_date])
            rows = await self.store.query_availability_slots(dentist["id"], on_date, on_date)
            free = self._free_slots(rows)
            if free:
                alternatives.append(
                    AlternativeDentist(dentistId=dentist["id"], name=dentist["name"], availableSlots=len(free))
                )
        alternatives.sort(key=lambda a: -a.availableSlots)
        return alternatives

    def _free_slots(self, rows: Sequence[AvailabilitySlot]) -> List[AvailabilitySlot]:
        return filter_bookable(rows, self.now())

