"""Bookable date/time grid.

Pure functions: every call recomputes from the date/time it is given, so the
grid never goes stale across midnight.
"""
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from app.core.config import settings
from app.services.clock import utcnow
from app.services.errors import ValidationError


def _tz() -> ZoneInfo:
    return ZoneInfo(settings.SLOT_TIMEZONE)


def local_now(now: datetime | None = None) -> datetime:
    """`now` as naive wall-clock time in the calendar timezone."""
    now = now or utcnow()
    if now.tzinfo is not None:
        now = now.astimezone(_tz()).replace(tzinfo=None)
    return now


def dates(today: date | None = None) -> list[date]:
    if today is None:
        today = local_now().date()
    return [today + timedelta(days=i) for i in range(settings.SLOT_HORIZON_DAYS)]


def slots_for_day(day: date | None = None) -> list[str]:
    """Half-hour labels from opening through the last start, then the closing label.

    The grid is the same every day; `day` is accepted so callers can treat it per date.
    """
    step = settings.SLOT_STEP_MINUTES
    start = settings.SLOT_OPEN_HOUR * 60
    close = settings.SLOT_CLOSE_HOUR * 60
    labels = [f"{m // 60:02d}:{m % 60:02d}" for m in range(start, close, step)]
    labels.append(f"{close // 60:02d}:{close % 60:02d}")
    return labels


def _parse_label(slot: str) -> time:
    try:
        hh, mm = slot.split(":")
        return time(int(hh), int(mm))
    except (AttributeError, ValueError):
        raise ValidationError(f"invalid slot label: {slot!r}")


def is_disabled(day: date, slot: str, now: datetime | None = None) -> bool:
    current = local_now(now)
    if day != current.date():
        return False
    return datetime.combine(day, _parse_label(slot)) <= current


def slot_grid(day: date, now: datetime | None = None) -> list[dict]:
    return [{"time": s, "disabled": is_disabled(day, s, now)} for s in slots_for_day(day)]


def validate_slot(date_str: str, time_str: str, now: datetime | None = None) -> tuple[date, str]:
    """Check a requested slot against the live grid; returns the parsed day and label."""
    try:
        day = date.fromisoformat(date_str)
    except (TypeError, ValueError):
        raise ValidationError("date must be YYYY-MM-DD")
    label = _parse_label(time_str)
    label = f"{label.hour:02d}:{label.minute:02d}"
    if day not in dates(local_now(now).date()):
        raise ValidationError(f"{date_str} is outside the booking window")
    if label not in slots_for_day(day):
        raise ValidationError(f"{time_str} is not a bookable slot")
    if is_disabled(day, label, now):
        raise ValidationError(f"{date_str} {label} has already passed")
    return day, label
