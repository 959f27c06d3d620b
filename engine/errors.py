"""
engine/errors.py

Error taxonomy for the health-record core.

Every failure carries a stable ``kind`` string (safe to branch on or to put
on the wire) plus a human-readable message.
"""

from __future__ import annotations

from typing import Any, Iterable


class HealthVaultError(Exception):
    """Base class for every domain failure."""

    kind = "error"
    default_message = "The operation failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


# ---------------------------------------------------------------------------
# National ID
# ---------------------------------------------------------------------------


class InvalidFormat(HealthVaultError, ValueError):
    kind = "invalid_format"
    default_message = "Invalid Aadhaar format. Must be 12 digits."


class InvalidChecksum(HealthVaultError, ValueError):
    kind = "invalid_checksum"
    default_message = "Invalid Aadhaar number. Please check the number and try again."


# ---------------------------------------------------------------------------
# Date / time parsing
# ---------------------------------------------------------------------------


class ParseError(HealthVaultError, ValueError):
    kind = "parse_error"


class MissingTime(ParseError):
    kind = "missing_time"
    default_message = "A time is required."


class InvalidTime(ParseError):
    kind = "invalid_time"
    default_message = "Invalid time. Use HH:MM (24-hour)."


class InvalidDate(ParseError):
    kind = "invalid_date"
    default_message = "Invalid date. Use dd-mm-yyyy or yyyy-mm-dd."


# ---------------------------------------------------------------------------
# Authorization / validation
# ---------------------------------------------------------------------------


class AccessDenied(HealthVaultError, PermissionError):
    kind = "access_denied"
    default_message = (
        "Access Denied. This patient has not granted you permission to view their records."
    )


class ValidationError(HealthVaultError, ValueError):
    """A record or profile is missing required fields; nothing was written."""

    kind = "validation_error"

    def __init__(self, message: str | None = None, fields: Iterable[str] = ()) -> None:
        self.fields = sorted(set(fields))
        if message is None:
            message = "Missing or invalid fields: " + ", ".join(self.fields)
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "fields": list(self.fields)}


class NotFound(HealthVaultError, LookupError):
    kind = "not_found"
    default_message = "The requested item does not exist."


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


class BookingError(HealthVaultError, ValueError):
    kind = "booking_error"
    default_message = "The appointment could not be booked."


class PastDateTime(BookingError):
    kind = "past_datetime"
    default_message = "Please choose a future date and time for the appointment."


class InvalidTransition(HealthVaultError):
    kind = "invalid_transition"

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot move an appointment from '{current}' to '{target}'.")


# ---------------------------------------------------------------------------
# Backing store
# ---------------------------------------------------------------------------


class StorageUnavailable(HealthVaultError):
    """
    The backing store failed transiently.

    ``previous`` optionally holds the last confirmed value so that an
    optimistic caller can restore its view.
    """

    kind = "storage_unavailable"
    default_message = "The record store is temporarily unavailable. Please try again."

    def __init__(self, message: str | None = None, previous: Any = None) -> None:
        self.previous = previous
        super().__init__(message)
