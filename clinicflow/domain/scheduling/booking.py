"""
Shared booking plumbing for the recall and reschedule services

Both services claim slots the same way and treat notifications and
analytics as best effort; the rules live here once.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Optional

from .errors import SlotUnavailableError
from .interfaces import AnalyticsSink, Notifier, SchedulingStore
from .time_calculator import is_bookable

logger = logging.getLogger(__name__)


def new_hold_token() -> str:
    """Placeholder owner for a slot between reservation and appointment creation"""
    return f"hold-{uuid.uuid4().hex}"


class BookingService:
    """Base for services that claim slots on behalf of a patient"""

    def __init__(
        self,
        store: SchedulingStore,
        notifier: Notifier,
        analytics: AnalyticsSink,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.analytics = analytics
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._clock()

    async def _hold_slot(self, dentist_id: str, slot_date: date, slot_time: str) -> str:
        """
        Reserve a caller-chosen slot under a fresh hold token and return it.

        Slots inside the booking lead time are refused here; emergency-only
        capacity is refused by the store's conditional reservation.
        """
        if not is_bookable(slot_date, slot_time, self.now()):
            logger.info(f"⚠️ Refused slot {slot_date} {slot_time} for dentist {dentist_id}: past booking cutoff")
            raise SlotUnavailableError("This time slot can no longer be booked. Please select another time.")

        hold_id = new_hold_token()
        await self.store.reserve_slot(dentist_id, slot_date, slot_time, hold_id)
        return hold_id

    async def _release_hold(self, hold_id: str) -> None:
        try:
            await self.store.release_slot(hold_id)
            logger.info(f"↩️ Released slot hold {hold_id}")
        except Exception:
            logger.exception(f"❌ Failed to release slot hold {hold_id}")

    async def _notify_patient(
        self,
        patient_id: str,
        title: str,
        body: str,
        category: str,
        severity: str = "normal",
        deep_link: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            user_id = await self.store.lookup_patient_user_id(patient_id)
            if not user_id:
                logger.debug(f"⚠️ Patient {patient_id} has no account, skipping {category} notification")
                return
            await self.notifier.send_notification(
                user_id, title, body, category, severity, deep_link, metadata
            )
        except Exception as e:
            logger.error(f"❌ Failed to send {category} notification for patient {patient_id}: {e}")

    def _track(self, event_name: str, dentist_id: Optional[str], payload: Dict[str, Any]) -> None:
        try:
            self.analytics.track(event_name, dentist_id, payload)
        except Exception as e:
            logger.warning(f"⚠️ Analytics event {event_name} dropped: {e}")
