"""
engine/aadhaar.py

Structural validation of 12-digit Aadhaar numbers with the Verhoeff checksum.

This only proves that a number is well formed; it does not check that the
number was ever issued.
"""

from __future__ import annotations

import logging
import re
from enum import Enum

from pydantic import BaseModel

from engine.errors import InvalidChecksum, InvalidFormat

logger = logging.getLogger(__name__)

_AADHAAR_RE = re.compile(r"[0-9]{12}")

# Multiplication table of the dihedral group D5.
_D = (
    (0, 1, 2, 3, 4, 5, 6, 7, 8, 9),
    (1, 2, 3, 4, 0, 6, 7, 8, 9, 5),
    (2, 3, 4, 0, 1, 7, 8, 9, 5, 6),
    (3, 4, 0, 1, 2, 8, 9, 5, 6, 7),
    (4, 0, 1, 2, 3, 9, 5, 6, 7, 8),
    (5, 9, 8, 7, 6, 0, 4, 3, 2, 1),
    (6, 5, 9, 8, 7, 1, 0, 4, 3, 2),
    (7, 6, 5, 9, 8, 2, 1, 0, 4, 3),
    (8, 7, 6, 5, 9, 3, 2, 1, 0, 4),
    (9, 8, 7, 6, 5, 4, 3, 2, 1, 0),
)

# Position-dependent permutations; row i applies to the i-th digit from the right.
_P = (
    (0, 1, 2, 3, 4, 5, 6, 7, 8, 9),
    (1, 5, 7, 6, 2, 8, 3, 0, 9, 4),
    (5, 8, 0, 3, 7, 9, 6, 1, 4, 2),
    (8, 9, 1, 6, 0, 4, 3, 5, 2, 7),
    (9, 4, 5, 3, 1, 2, 6, 8, 7, 0),
    (4, 2, 8, 6, 5, 7, 3, 9, 0, 1),
    (2, 7, 9, 3, 8, 0, 6, 4, 1, 5),
    (7, 0, 4, 6, 9, 1, 3, 2, 5, 8),
)

_INV = (0, 4, 3, 2, 1, 5, 6, 7, 8, 9)


class AadhaarStatus(str, Enum):
    valid = "valid"
    invalid_format = "invalid_format"
    invalid_checksum = "invalid_checksum"


class AadhaarResult(BaseModel):
    status: AadhaarStatus
    message: str

    @property
    def ok(self) -> bool:
        return self.status is AadhaarStatus.valid


def _checksum(digits: str, offset: int = 0) -> int:
    checksum = 0
    for i, ch in enumerate(reversed(digits)):
        checksum = _D[checksum][_P[(i + offset) % 8][int(ch)]]
    return checksum


def verhoeff_ok(digits: str) -> bool:
    """True if *digits* (any length, ASCII digits only) carries a valid check digit."""
    return _checksum(digits) == 0


def check_digit(digits: str) -> str:
    """Return the Verhoeff check digit to append to *digits*."""
    if not digits.isascii() or not digits.isdigit():
        raise ValueError("check_digit() expects a string of ASCII digits")
    return str(_INV[_checksum(digits, offset=1)])


def validate(aadhaar: str) -> AadhaarResult:
    """Classify *aadhaar* as valid, badly formatted, or failing the checksum."""
    if not isinstance(aadhaar, str) or not _AADHAAR_RE.fullmatch(aadhaar):
        return AadhaarResult(status=AadhaarStatus.invalid_format, message=InvalidFormat.default_message)

    if not verhoeff_ok(aadhaar):
        return AadhaarResult(status=AadhaarStatus.invalid_checksum, message=InvalidChecksum.default_message)

    return AadhaarResult(status=AadhaarStatus.valid, message="Aadhaar number verified successfully.")


def require_valid(aadhaar: str) -> str:
    """Return *aadhaar* unchanged, or raise ``InvalidFormat`` / ``InvalidChecksum``."""
    result = validate(aadhaar)
    if result.status is AadhaarStatus.invalid_format:
        raise InvalidFormat(result.message)
    if result.status is AadhaarStatus.invalid_checksum:
        logger.info("Rejected national ID with a failing checksum")
        raise InvalidChecksum(result.message)
    return aadhaar
