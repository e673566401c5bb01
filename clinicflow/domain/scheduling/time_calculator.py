"""
Clinic time conversion

Single source of truth for "what time is it at the clinic". Appointments are
stored in UTC, availability slots and recall dates are clinic-local civil
dates/times, and the server's own timezone never matters.

Naive datetimes returned by this module are clinic-local wall clock values.
Their ``fold`` attribute is kept so an instant inside the repeated hour of a
DST fall-back converts back to the same UTC instant.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Union
from zoneinfo import ZoneInfo

from dateutil.parser import isoparse

from ...config import (
    CLINIC_DAY_END,
    CLINIC_DAY_START,
    CLINIC_TIMEZONE,
    MIN_BOOKING_LEAD_MINUTES,
    SLOT_INTERVAL_MINUTES,
)
from .errors import InvalidDateError

CLINIC_TZ = ZoneInfo(CLINIC_TIMEZONE)
UTC = timezone.utc
INVALID_DATE = "Invalid date"

DateLike = Union[datetime, date, str]


def _to_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time(0, 0))
    if isinstance(value, str) and value.strip():
        try:
            return isoparse(value.strip())
        except (ValueError, OverflowError) as e:
            raise InvalidDateError(f"Invalid date: {value!r}") from e
    raise InvalidDateError(f"Invalid date: {value!r}")


def _utc_now(now: Optional[datetime] = None) -> datetime:
    if now is None:
        return datetime.now(UTC)
    return now.replace(tzinfo=UTC) if now.tzinfo is None else now.astimezone(UTC)


def clinic_time_to_utc(local_datetime: DateLike) -> datetime:
    """Interpret a clinic wall-clock value and return the aware UTC instant"""
    dt = _to_datetime(local_datetime)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=CLINIC_TZ)
    return dt.astimezone(UTC)


def utc_to_clinic_time(instant: DateLike) -> datetime:
    """Return the naive clinic-local wall clock value for a UTC instant

    Naive input is taken to be UTC, which is how the appointments table stores it.
    """
    dt = _to_datetime(instant)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(CLINIC_TZ).replace(tzinfo=None)


def format_clinic_time(instant: DateLike, pattern: str = "%Y-%m-%d %H:%M") -> str:
    """Format an instant in clinic time; never raises (used directly by UI payloads)"""
    try:
        return utc_to_clinic_time(instant).strftime(pattern)
    except (InvalidDateError, ValueError, TypeError, OverflowError):
        return INVALID_DATE


def parse_slot_time(value: Union[str, time]) -> time:
    """Accept ``HH:MM``, ``HH:MM:SS`` or a ``time`` and return a ``time``"""
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    if isinstance(value, str):
        for fmt in ("%H:%M", "%H:%M:%S"):
            try:
                return datetime.strptime(value.strip(), fmt).time()
            except ValueError:
                continue
    raise InvalidDateError(f"Invalid time: {value!r}")


def format_slot_time(value: Union[str, time]) -> str:
    return parse_slot_time(value).strftime("%H:%M")


def parse_calendar_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return _to_datetime(value).date()


def create_appointment_datetime(calendar_date: DateLike, time_of_day: Union[str, time]) -> datetime:
    """Compose a clinic-local date and ``HH:MM`` into a UTC instant"""
    local = datetime.combine(parse_calendar_date(calendar_date), parse_slot_time(time_of_day))
    return clinic_time_to_utc(local)


def clinic_now(now: Optional[datetime] = None) -> datetime:
    return _utc_now(now).astimezone(CLINIC_TZ)


def clinic_today(now: Optional[datetime] = None) -> date:
    return clinic_now(now).date()


def time_band(value: Union[str, time]) -> str:
    """morning before 12:00, afternoon until 17:00, evening after"""
    hour = parse_slot_time(value).hour
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    return "evening"


def is_bookable(
    slot_date: DateLike, slot_time: Union[str, time], now: Optional[datetime] = None
) -> bool:
    """True when the slot starts at least the minimum lead time from now"""
    cutoff = _utc_now(now) + timedelta(minutes=MIN_BOOKING_LEAD_MINUTES)
    return create_appointment_datetime(slot_date, slot_time) >= cutoff


def clinic_day_grid() -> List[str]:
    """Every ``HH:MM`` slot boundary from opening to closing, inclusive"""
    step = timedelta(minutes=SLOT_INTERVAL_MINUTES)
    current = datetime.combine(date.min, parse_slot_time(CLINIC_DAY_START))
    last = datetime.combine(date.min, parse_slot_time(CLINIC_DAY_END))

    grid: List[str] = []
    while current <= last:
        grid.append(current.strftime("%H:%M"))
        current += step
    return grid


def get_clinic_time_slots(calendar_date: DateLike, now: Optional[datetime] = None) -> List[str]:
    """
    Bookable ``HH:MM`` boundaries for a clinic day.

    For today (clinic-local) slots starting within the minimum lead time are
    left out.
    """
    day = parse_calendar_date(calendar_date)
    if day != clinic_today(now):
        return clinic_day_grid()
    return [slot for slot in clinic_day_grid() if is_bookable(day, slot, now)]
