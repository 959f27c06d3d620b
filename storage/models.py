"""
storage/models.py

Pydantic v2 data models for the health-record core.

These models describe the shape of data flowing between the domain rules
(``engine``) and whatever sits on top of them.  They are NOT ORM models;
persistence is handled entirely by db.py.

Users and medical records are tagged unions: the ``role`` / ``type`` field
selects the variant, so consumers match on the variant class instead of
probing for optional fields.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, NaiveDatetime, StringConstraints, TypeAdapter, field_validator

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class UserRole(str, Enum):
    """The two roles a registered identity can hold."""
    doctor = "doctor"
    patient = "patient"


class RecordType(str, Enum):
    consultation = "consultation"
    lab_result = "lab_result"
    allergy_note = "allergy_note"


class Severity(str, Enum):
    mild = "mild"
    moderate = "moderate"
    severe = "severe"


class AppointmentStatus(str, Enum):
    """Lifecycle states of an appointment; ``completed``/``cancelled`` are terminal."""
    scheduled = "scheduled"
    completed = "completed"
    cancelled = "cancelled"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class _BaseUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    uid: str
    name: str
    email: str | None = None
    created_at: NaiveDatetime


class Doctor(_BaseUser):
    role: Literal["doctor"] = "doctor"


class Patient(_BaseUser):
    role: Literal["patient"] = "patient"
    national_id: str = Field(description="12-digit Aadhaar number, checksum-validated at registration.")
    shared_with: frozenset[str] = Field(
        default_factory=frozenset,
        description="uids of doctors allowed to read this patient's records.",
    )


UserProfile = Annotated[Union[Doctor, Patient], Field(discriminator="role")]
USER_PROFILE = TypeAdapter(UserProfile)


class AccessContext(BaseModel):
    """The authenticated caller, passed explicitly into every service call."""
    model_config = ConfigDict(frozen=True)

    uid: str
    role: UserRole
    name: str


# ---------------------------------------------------------------------------
# Medical records
# ---------------------------------------------------------------------------


class _BaseRecord(BaseModel):
    """
    Fields shared by every record kind.

    ``id`` is ``None`` on a draft and assigned by the store on append.
    ``date`` is the clinically relevant instant (the visit date for a
    consultation), not necessarily the time of entry.  Instants are naive
    local wall-clock datetimes; timezone-aware values are rejected.
    """
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    date: NaiveDatetime | None = None
    notes: str | None = None

    @field_validator("notes")
    @classmethod
    def normalise_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class Consultation(_BaseRecord):
    type: Literal["consultation"] = "consultation"
    doctor_id: NonEmptyStr
    doctor_name: NonEmptyStr
    diagnosis: NonEmptyStr
    prescription: NonEmptyStr


class LabResult(_BaseRecord):
    type: Literal["lab_result"] = "lab_result"
    test_name: NonEmptyStr
    result_summary: NonEmptyStr


class AllergyNote(_BaseRecord):
    type: Literal["allergy_note"] = "allergy_note"
    allergen: NonEmptyStr
    reaction: NonEmptyStr
    severity: Severity


MedicalRecord = Annotated[Union[Consultation, LabResult, AllergyNote], Field(discriminator="type")]
MEDICAL_RECORD = TypeAdapter(MedicalRecord)


# ---------------------------------------------------------------------------
# Appointments
# ---------------------------------------------------------------------------


class Appointment(BaseModel):
    """A booked visit; ``id`` is assigned by the store on insert."""
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    patient_id: str
    patient_name: str
    patient_email: str
    doctor_id: str
    doctor_name: str
    date_time: NaiveDatetime
    reason: str
    status: AppointmentStatus = AppointmentStatus.scheduled
    created_at: NaiveDatetime


class AuditEntry(BaseModel):
    """One row of the append-only audit log."""
    id: int
    actor_id: str
    action: str
    subject_id: str | None = None
    timestamp: str
