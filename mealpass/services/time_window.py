"""
Time-window arithmetic for shifts and meal types.

Windows are evaluated at minute resolution (seconds are truncated) and may
wrap past midnight:

    08:00–17:00, tolerance 15   →  in range 08:00 … 17:15
    22:00–02:00, tolerance 0    →  in range 22:00 … 23:59 and 00:00 … 02:00

All helpers here are pure.  "Today" is always the *local* calendar date of
the kiosk (LOCAL_TIMEZONE), never the UTC date: a holder eating at 22:30 in
UTC-3 must not be booked on tomorrow's quota.
"""

from __future__ import annotations

from datetime import date, datetime, time
from zoneinfo import ZoneInfo


class InvalidWindowError(ValueError):
    """A window whose start equals its end has no defined meaning."""


def to_minutes(value: time) -> int:
    """Minutes since midnight, seconds truncated."""
    return value.hour * 60 + value.minute


def parse_time_of_day(value: str | time) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` into a ``time``.

    Raises ValueError on anything else.
    """
    if isinstance(value, time):
        return value
    text = (value or "").strip()
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time of day {value!r}. Use HH:MM or HH:MM:SS.")


def is_within_window(
    current: time,
    start: time,
    end: time,
    tolerance_minutes: int = 0,
) -> bool:
    """Return True if ``current`` falls inside the window [start, end + tolerance].

    Raises:
        InvalidWindowError: start and end are the same minute.
    """
    start_m = to_minutes(start)
    end_m = to_minutes(end)
    now_m = to_minutes(current)

    if start_m == end_m:
        raise InvalidWindowError(f"Window {start:%H:%M}–{end:%H:%M} is empty")

    end_with_tolerance = end_m + max(tolerance_minutes, 0)

    if start_m < end_m:
        # Tolerance past midnight does not carry into the next morning
        return start_m <= now_m <= end_with_tolerance

    # Overnight window
    return now_m >= start_m or now_m <= end_with_tolerance


def validate_window(start: time, end: time) -> None:
    """Reject empty windows at configuration time."""
    if to_minutes(start) == to_minutes(end):
        raise InvalidWindowError("Start and end times cannot be the same")


def format_window(start: time, end: time) -> str:
    return f"{start:%H:%M} às {end:%H:%M}"


# ── Local clock ──────────────────────────────────────────────────────────────


def _zone(tz_name: str | None):
    return ZoneInfo(tz_name) if tz_name else None


def local_now(tz_name: str | None = None) -> datetime:
    """Wall-clock now in the kiosk's zone (naive local time when unset)."""
    zone = _zone(tz_name)
    if zone is None:
        return datetime.now()
    return datetime.now(zone)


def local_today(tz_name: str | None = None) -> date:
    return local_now(tz_name).date()


def is_date_not_in_past(value: date, today: date) -> bool:
    """True for today or any later date (local calendar comparison)."""
    return value >= today
