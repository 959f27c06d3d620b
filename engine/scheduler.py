"""
engine/scheduler.py

Booking, cancelling and completing appointments.

State machine
-------------
    scheduled ──► cancelled
        │
        └──────► completed

``cancelled`` and ``completed`` are terminal.  Transitions are applied with
a compare-and-set against the store, so when two callers race on the same
appointment exactly one wins and the other gets ``InvalidTransition``.
Appointments are never deleted.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Literal

from engine.config import CLOCK_SKEW_TOLERANCE, DEFAULT_BOOKING_TIME
from engine.datetime_parser import parse_datetime
from engine.errors import BookingError, InvalidTransition, NotFound, PastDateTime
from engine.ports import AppointmentStore, IdentityStore
from storage.models import Appointment, AppointmentStatus, Doctor, Patient, UserRole

logger = logging.getLogger(__name__)

SortOrder = Literal["asc", "desc"]


class AppointmentScheduler:
    def __init__(
        self,
        store: AppointmentStore,
        identity: IdentityStore,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.identity = identity
        self.clock = clock

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    def book(self, patient_id: str, doctor_id: str, when: datetime, reason: str) -> Appointment:
        """
        Create a ``scheduled`` appointment.

        Raises:
            BookingError:  empty reason, timezone-aware *when*, unknown doctor,
                           or a patient profile without an email address.
            PastDateTime:  *when* is earlier than now minus the clock-skew
                           tolerance.
        """
        reason = (reason or "").strip()
        if not reason:
            raise BookingError("Please provide a reason for the appointment.")
        if when.tzinfo is not None:
            raise BookingError("Appointment times are local wall-clock times; drop the timezone.")

        now = self.clock()
        if when < now - CLOCK_SKEW_TOLERANCE:
            raise PastDateTime()

        doctor = self.identity.get_profile(doctor_id)
        if not isinstance(doctor, Doctor):
            raise BookingError("Could not find the selected doctor.")
        patient = self.identity.get_profile(patient_id)
        if not isinstance(patient, Patient) or not patient.email:
            raise BookingError("Could not find patient information.")

        appointment = Appointment(
            patient_id=patient.uid,
            patient_name=patient.name,
            patient_email=patient.email,
            doctor_id=doctor.uid,
            doctor_name=doctor.name,
            date_time=when,
            reason=reason,
            status=AppointmentStatus.scheduled,
            created_at=now,
        )
        appointment_id = self.store.insert_appointment(appointment)
        logger.info("Booked appointment %s: patient=%s doctor=%s", appointment_id, patient_id, doctor_id)
        return appointment.model_copy(update={"id": appointment_id})

    def book_from_text(
        self,
        patient_id: str,
        doctor_id: str,
        date_text: str,
        time_text: str,
        reason: str,
    ) -> Appointment:
        """The booking-form flow: parse the typed date/time, then :meth:`book`."""
        if not (reason or "").strip():
            raise BookingError("Please select a doctor, enter a date, and provide a reason.")
        when = parse_datetime(date_text, time_text, default_time=DEFAULT_BOOKING_TIME)
        return self.book(patient_id, doctor_id, when, reason)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self, appointment_id: str, target: AppointmentStatus, actor_id: str | None
    ) -> Appointment:
        if self.store.update_status(
            appointment_id, target, expected=AppointmentStatus.scheduled, actor_id=actor_id
        ):
            logger.info("Appointment %s -> %s", appointment_id, target.value)
            updated = self.store.get_appointment(appointment_id)
            if updated is None:
                raise NotFound(f"No appointment with id '{appointment_id}'.")
            return updated

        current = self.store.get_appointment(appointment_id)
        if current is None:
            raise NotFound(f"No appointment with id '{appointment_id}'.")
        logger.warning(
            "Rejected transition of appointment %s from %s to %s",
            appointment_id, current.status.value, target.value,
        )
        raise InvalidTransition(current.status.value, target.value)

    def cancel(self, appointment_id: str, actor_id: str | None = None) -> Appointment:
        """Cancel a scheduled appointment; *actor_id*, if given, is audited with the change."""
        return self._transition(appointment_id, AppointmentStatus.cancelled, actor_id)

    def complete(self, appointment_id: str, actor_id: str | None = None) -> Appointment:
        return self._transition(appointment_id, AppointmentStatus.completed, actor_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_for_user(self, uid: str, role: UserRole | str, order: SortOrder = "desc") -> list[Appointment]:
        """
        Every appointment where *uid* is the patient (or the doctor).

        Sorted here rather than in the store: per-user volumes are small and
        the store only has to support equality filters.
        """
        field = "doctor_id" if UserRole(role) is UserRole.doctor else "patient_id"
        appointments = self.store.query_appointments(field, uid)
        return sort_appointments(appointments, order)


# ---------------------------------------------------------------------------
# Client-side views
# ---------------------------------------------------------------------------


def sort_appointments(appointments: Iterable[Appointment], order: SortOrder = "desc") -> list[Appointment]:
    if order not in ("asc", "desc"):
        raise ValueError("order must be 'asc' or 'desc'")
    return sorted(appointments, key=lambda a: a.date_time, reverse=(order == "desc"))


def partition_patient_view(
    appointments: Iterable[Appointment], now: datetime
) -> tuple[list[Appointment], list[Appointment]]:
    """Split into (upcoming, past) by time alone; cancelled visits stay visible."""
    upcoming: list[Appointment] = []
    past: list[Appointment] = []
    for appointment in appointments:
        (upcoming if appointment.date_time > now else past).append(appointment)
    return upcoming, past


def doctor_upcoming(appointments: Iterable[Appointment], now: datetime) -> list[Appointment]:
    """Future appointments a doctor still has to attend (``scheduled`` only)."""
    return [
        a for a in appointments
        if a.date_time > now and a.status is AppointmentStatus.scheduled
    ]


def filter_by_status(
    appointments: Iterable[Appointment], status: AppointmentStatus | Literal["all"] = "all"
) -> list[Appointment]:
    if status == "all":
        return list(appointments)
    wanted = AppointmentStatus(status)
    return [a for a in appointments if a.status is wanted]
