"""
Helpers for slot wall-clock times ("HH:MM") and service dates ("YYYY-MM-DD").
"""
from datetime import date, datetime, time, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo


def parse_clock(value: Union[str, time, None]) -> Optional[time]:
    """
    Parse "HH:MM" or "HH:MM:SS" into a time. Returns None for empty input.
    Raises ValueError on malformed input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    if not isinstance(value, str):
        raise ValueError(f"expected HH:MM, got {value!r}")
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"expected HH:MM, got {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    second = int(parts[2]) if len(parts) == 3 else 0
    return time(hour, minute, second)


def format_clock(value: Optional[time]) -> Optional[str]:
    if value is None:
        return None
    return f"{value.hour:02d}:{value.minute:02d}"


def parse_service_date(value: Union[str, date]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def pickup_ready_at(service_date: date, cutoff: time, pickup_delay_minutes: int, tz: ZoneInfo) -> datetime:
    """Earliest moment couriers may start pickup: cutoff on the service date plus the delay."""
    return datetime.combine(service_date, cutoff, tzinfo=tz) + timedelta(minutes=pickup_delay_minutes)


def localize(now: datetime, tz: ZoneInfo) -> datetime:
    """Naive datetimes are taken as wall-clock time in ``tz``."""
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)
