"""
engine/ports.py

The narrow store interfaces the domain rules depend on.

Any backend offering per-entity atomic updates and simple equality filtering
can satisfy these; ``storage.db.Database`` implements all of them on SQLite.
"""

from __future__ import annotations

from typing import Literal, Protocol

from storage.models import Appointment, AppointmentStatus, Doctor, MedicalRecord, UserProfile


class IdentityStore(Protocol):
    def get_profile(self, uid: str) -> UserProfile | None: ...

    def list_doctors(self) -> list[Doctor]: ...

    def create_profile(self, profile: UserProfile) -> None: ...


class RecordStore(Protocol):
    def query_records(self, patient_id: str) -> list[MedicalRecord]: ...

    def insert_record(self, patient_id: str, record: MedicalRecord) -> str: ...


class AppointmentStore(Protocol):
    def query_appointments(
        self, field: Literal["patient_id", "doctor_id"], value: str
    ) -> list[Appointment]: ...

    def get_appointment(self, appointment_id: str) -> Appointment | None: ...

    def insert_appointment(self, appointment: Appointment) -> str: ...

    def update_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        expected: AppointmentStatus,
        actor_id: str | None = None,
    ) -> bool:
        """
        Set *status* only if the row currently holds *expected*; report success.

        A successful change made on behalf of *actor_id* is audited in the same
        transaction.
        """
        ...


class ConsentStore(Protocol):
    def get_shared_with(self, patient_id: str) -> frozenset[str] | None:
        """The patient's consent set, or ``None`` if no such patient exists."""
        ...

    def update_shared_with(self, patient_id: str, doctor_id: str, add: bool) -> None: ...


class AuditLog(Protocol):
    def append_audit(self, actor_id: str, action: str, subject_id: str | None = None) -> None: ...


class Backend(IdentityStore, RecordStore, AppointmentStore, ConsentStore, AuditLog, Protocol):
    """Everything the service facade needs from one backing store."""
