# nexticket/domain/schedule.py

from datetime import date, datetime, time, timedelta, timezone

from nexticket.domain.exceptions import BookingExpiredError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def departure_at(departure_date: date, departure_time: time, utc_offset_minutes: int) -> datetime:
    """Departure as an aware datetime in the marketplace's local offset."""
    tz = timezone(timedelta(minutes=utc_offset_minutes))
    return datetime.combine(departure_date, departure_time, tzinfo=tz)


def has_departed(
    departure_date: date,
    departure_time: time,
    now: datetime,
    utc_offset_minutes: int,
) -> bool:
    return departure_at(departure_date, departure_time, utc_offset_minutes) <= now


def ensure_not_departed(
    departure_date: date,
    departure_time: time,
    now: datetime,
    utc_offset_minutes: int,
) -> None:
    if has_departed(departure_date, departure_time, now, utc_offset_minutes):
        raise BookingExpiredError(
            f"Departure {departure_date.isoformat()} "
            f"{departure_time.strftime('%H:%M')} has passed"
        )
