"""
engine/service.py

Request-scoped entry point for whatever hosts the core (web API, UI, jobs).

Responsibilities
----------------
- Wiring the domain components to one backing store and one clock.
- Taking the authenticated caller as an explicit ``AccessContext`` on every
  call; nothing here reads ambient "current user" state.
- Enforcing who may do what: consent for record reads and writes, role for
  consultations and bookings, party membership for appointment changes.
- Writing the audit trail for reads and state changes.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Callable, Iterable, NamedTuple

from engine.consent import ConsentChange, ConsentRegistry
from engine.errors import AccessDenied, NotFound
from engine.ports import Backend
from engine.records import MedicalRecordStore
from engine.registration import Registry
from engine.reminders import due_reminders, reminder_message, visible_reminders
from engine.scheduler import (
    AppointmentScheduler,
    SortOrder,
    doctor_upcoming,
    partition_patient_view,
)
from storage.models import AccessContext, Appointment, MedicalRecord, Patient, RecordType, UserRole

logger = logging.getLogger(__name__)


class Reminder(NamedTuple):
    appointment: Appointment
    message: str


class HealthVaultService:
    def __init__(self, db: Backend, clock: Callable[[], datetime] = datetime.now) -> None:
        self.db = db
        self.clock = clock
        self.registry = Registry(db, clock)
        self.consent = ConsentRegistry(db, db)
        self.records = MedicalRecordStore(db, clock)
        self.scheduler = AppointmentScheduler(db, db, clock)

    # ------------------------------------------------------------------
    # Medical history
    # ------------------------------------------------------------------

    def _authorize_patient(self, ctx: AccessContext, patient_uid: str) -> Patient:
        """Consent check plus "is this actually a patient", failing the same way for both."""
        self.consent.check_access_or_fail(patient_uid, ctx.uid)
        patient = self.db.get_profile(patient_uid)
        if not isinstance(patient, Patient):
            logger.warning("Access denied: %s is not a patient record", patient_uid)
            raise AccessDenied()
        return patient

    def open_patient(self, ctx: AccessContext, patient_uid: str) -> tuple[Patient, list[MedicalRecord]]:
        """
        Look up a patient by uid (e.g. the payload of a scanned QR code) and
        return the profile with its full history.
        """
        patient = self._authorize_patient(ctx, patient_uid)
        history = self.records.list(patient_uid)
        self.db.append_audit(ctx.uid, "records_viewed", patient_uid)
        return patient, history

    def history(self, ctx: AccessContext, patient_uid: str) -> list[MedicalRecord]:
        return self.open_patient(ctx, patient_uid)[1]

    def add_record(
        self,
        ctx: AccessContext,
        patient_uid: str,
        draft: MedicalRecord | Mapping[str, Any],
    ) -> MedicalRecord:
        """
        Append a record to *patient_uid*'s history on behalf of *ctx*.

        Consultations may only be written by doctors and are always
        attributed to the writing doctor, whatever the draft says.
        """
        self._authorize_patient(ctx, patient_uid)
        data = dict(draft) if isinstance(draft, Mapping) else draft.model_dump()
        if data.get("type") == RecordType.consultation:
            if ctx.role is not UserRole.doctor:
                raise AccessDenied("Only doctors can record consultations.")
            data.update(doctor_id=ctx.uid, doctor_name=ctx.name)
        return self.records.append(patient_uid, data)

    # ------------------------------------------------------------------
    # Consent
    # ------------------------------------------------------------------

    def _require_role(self, ctx: AccessContext, role: UserRole) -> None:
        if ctx.role is not role:
            raise AccessDenied(f"Only a {role.value} can do this.")

    def set_permission(self, ctx: AccessContext, doctor_id: str, allowed: bool) -> ConsentChange:
        """A patient shares (or stops sharing) their records with one doctor."""
        self._require_role(ctx, UserRole.patient)
        return self.consent.set_permission(ctx.uid, doctor_id, allowed)

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------

    def book(
        self,
        ctx: AccessContext,
        doctor_id: str,
        date_text: str,
        time_text: str,
        reason: str,
    ) -> Appointment:
        self._require_role(ctx, UserRole.patient)
        return self.scheduler.book_from_text(ctx.uid, doctor_id, date_text, time_text, reason)

    def _own_appointment(self, ctx: AccessContext, appointment_id: str) -> Appointment:
        appointment = self.db.get_appointment(appointment_id)
        if appointment is None or ctx.uid not in (appointment.patient_id, appointment.doctor_id):
            raise NotFound(f"No appointment with id '{appointment_id}'.")
        return appointment

    def cancel(self, ctx: AccessContext, appointment_id: str) -> Appointment:
        self._own_appointment(ctx, appointment_id)
        return self.scheduler.cancel(appointment_id, actor_id=ctx.uid)

    def complete(self, ctx: AccessContext, appointment_id: str) -> Appointment:
        appointment = self._own_appointment(ctx, appointment_id)
        if ctx.uid != appointment.doctor_id:
            raise AccessDenied("Only the treating doctor can complete an appointment.")
        return self.scheduler.complete(appointment_id, actor_id=ctx.uid)

    def appointments(self, ctx: AccessContext, order: SortOrder = "desc") -> list[Appointment]:
        return self.scheduler.list_for_user(ctx.uid, ctx.role, order)

    def upcoming(self, ctx: AccessContext) -> list[Appointment]:
        """
        Patients see every future appointment, cancelled ones included;
        doctors see only future appointments still ``scheduled``.
        """
        now = self.clock()
        appointments = self.appointments(ctx)
        if ctx.role is UserRole.doctor:
            return doctor_upcoming(appointments, now)
        return partition_patient_view(appointments, now)[0]

    def reminders(self, ctx: AccessContext, dismissed: Iterable[str] = ()) -> list[Reminder]:
        due = due_reminders(self.appointments(ctx, order="asc"), self.clock())
        return [
            Reminder(appointment=a, message=reminder_message(a, ctx.role))
            for a in visible_reminders(due, dismissed)
        ]
