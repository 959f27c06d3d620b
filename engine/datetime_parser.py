"""
engine/datetime_parser.py

Tolerant parsing of human-entered booking dates and times.

Accepted dates: ``yyyy-m-d`` (what an HTML date input produces) or
``d-m-yyyy`` / ``d/m/yyyy``.  Accepted times: ``h:mm`` or ``hh:mm`` on a
24-hour clock.  The result is a naive ``datetime`` taken literally as local
wall-clock time; no timezone conversion happens here.
"""

from __future__ import annotations

import re
from datetime import datetime

from engine.config import DEFAULT_BOOKING_TIME
from engine.errors import InvalidDate, InvalidTime, MissingTime

_ISO_DATE_RE = re.compile(r"([0-9]{4})-([0-9]{1,2})-([0-9]{1,2})")
_DMY_DATE_RE = re.compile(r"([0-9]{1,2})[-/]([0-9]{1,2})[-/]([0-9]{4})")
_TIME_RE = re.compile(r"([0-9]{1,2}):([0-9]{2})")
# What an empty time widget tends to submit: "--:--", "-", ":" and friends.
_PLACEHOLDER_TIME_RE = re.compile(r"-+:?-*|:")


def _parse_time(text: str) -> tuple[int, int]:
    match = _TIME_RE.fullmatch(text)
    if not match:
        raise InvalidTime(f"Invalid time '{text}'. Use HH:MM (24-hour).")
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise InvalidTime(f"Time '{text}' is out of range.")
    return hour, minute


def _parse_date(text: str) -> tuple[int, int, int]:
    match = _ISO_DATE_RE.fullmatch(text)
    if match:
        return int(match.group(1)), int(match.group(2)), int(match.group(3))
    match = _DMY_DATE_RE.fullmatch(text)
    if match:
        return int(match.group(3)), int(match.group(2)), int(match.group(1))
    raise InvalidDate(f"Unrecognised date '{text}'. Use dd-mm-yyyy or yyyy-mm-dd.")


def parse_datetime(
    date_text: str,
    time_text: str | None,
    default_time: str | None = DEFAULT_BOOKING_TIME,
) -> datetime:
    """
    Combine a date string and a time string into a local ``datetime``.

    A blank or placeholder *time_text* falls back to *default_time*; pass
    ``default_time=None`` to make the time mandatory.

    Raises:
        InvalidDate:  unrecognised date shape or an impossible calendar date
                      (31 February, month 13, ...).
        InvalidTime:  unrecognised time shape or hour/minute out of range.
        MissingTime:  no time given and no default configured.
    """
    d = (date_text or "").strip()
    if not d:
        raise InvalidDate("A date is required.")
    t = (time_text or "").strip()

    if _PLACEHOLDER_TIME_RE.fullmatch(t):
        t = ""
    if not t:
        if not default_time:
            raise MissingTime()
        t = default_time

    hour, minute = _parse_time(t)

    year, month, day = _parse_date(d)

    try:
        value = datetime(year, month, day, hour, minute)
    except ValueError as exc:
        raise InvalidDate(f"'{d}' is not a real calendar date.") from exc

    # Every component must survive construction unchanged; nothing may roll over.
    if (value.year, value.month, value.day, value.hour, value.minute) != (year, month, day, hour, minute):
        raise InvalidDate(f"'{d}' is not a real calendar date.")

    return value


def parse_visit_date(date_text: str) -> datetime:
    """A clinician-entered visit date, anchored at local midnight."""
    return parse_datetime(date_text, "", default_time="00:00")
