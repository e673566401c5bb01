"""
Suggested-slot selection for recalls

Picks up to three free slots around a recall's due date, honoring the
patient's weekday and time-of-day preferences.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional

from .interfaces import SlotStore
from .schemas import AvailabilitySlot, PatientModifiers, RecallSlot
from .time_calculator import create_appointment_datetime, is_bookable, time_band

logger = logging.getLogger(__name__)

# Slightly early beats very late for recall care
WINDOW_DAYS_BEFORE_DUE = 3
WINDOW_DAYS_AFTER_DUE = 7
MAX_SUGGESTED_SLOTS = 3
PEDIATRIC_TIME_BANDS = ("afternoon", "evening")
DUE_REFERENCE_TIME = "12:00"


def date_range(start: date, end: date) -> List[date]:
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def js_weekday(day: date) -> int:
    """0=Sunday .. 6=Saturday, the convention stored in patient preferences"""
    return (day.weekday() + 1) % 7


async def ensure_slots_exist(store: SlotStore, dentist_id: str, days: Iterable[date]) -> None:
    """Run the idempotent slot generator for each day; failures only cost suggestions"""
    for day in days:
        try:
            await store.generate_daily_slots(dentist_id, day)
        except Exception as e:
            logger.warning(f"⚠️ Slot generation failed for dentist {dentist_id} on {day}: {e}")


def filter_bookable(
    slots: Iterable[AvailabilitySlot], now: Optional[datetime] = None
) -> List[AvailabilitySlot]:
    """Free, non-emergency slots far enough in the future to be booked"""
    return [
        slot
        for slot in slots
        if slot.isAvailable and not slot.emergencyOnly and is_bookable(slot.date, slot.time, now)
    ]


def matches_preferences(slot: AvailabilitySlot, modifiers: Optional[PatientModifiers]) -> bool:
    if modifiers is None:
        return True
    band = time_band(slot.time)
    if modifiers.preferredDays and js_weekday(slot.date) not in modifiers.preferredDays:
        return False
    if modifiers.preferredTimeBands and band not in modifiers.preferredTimeBands:
        return False
    if modifiers.isPediatric and band not in PEDIATRIC_TIME_BANDS:
        return False
    return True


def distance_from_due(slot: AvailabilitySlot, due_date: date) -> timedelta:
    reference = create_appointment_datetime(due_date, DUE_REFERENCE_TIME)
    return abs(create_appointment_datetime(slot.date, slot.time) - reference)


def rank_around_due_date(
    slots: Iterable[AvailabilitySlot], due_date: date, limit: int = MAX_SUGGESTED_SLOTS
) -> List[RecallSlot]:
    """Closest to the due date first; on equal distance the earlier slot wins"""
    ordered = sorted(
        slots,
        key=lambda s: (distance_from_due(s, due_date), create_appointment_datetime(s.date, s.time)),
    )
    return [RecallSlot(date=s.date, time=s.time) for s in ordered[:limit]]


async def generate_suggested_slots_around_date(
    store: SlotStore,
    dentist_id: str,
    due_date: date,
    modifiers: Optional[PatientModifiers] = None,
    now: Optional[datetime] = None,
) -> List[RecallSlot]:
    """
    Up to three candidate slots for a recall, ordered by closeness to ``due_date``.

    An empty list is a normal outcome (nothing free in the window).
    """
    start = due_date - timedelta(days=WINDOW_DAYS_BEFORE_DUE)
    end = due_date + timedelta(days=WINDOW_DAYS_AFTER_DUE)

    await ensure_slots_exist(store, dentist_id, date_range(start, end))
    rows = await store.query_availability_slots(dentist_id, start, end)

    candidates = [slot for slot in filter_bookable(rows, now) if matches_preferences(slot, modifiers)]
    suggestions = rank_around_due_date(candidates, due_date)

    logger.info(
        f"📅 {len(suggestions)} recall slot(s) for dentist {dentist_id} around {due_date} "
        f"({len(rows)} rows, {len(candidates)} candidates)"
    )
    return suggestions
