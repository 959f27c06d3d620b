"""
storage/db.py

SQLite backend for the health-record core.

Schema
------
users         — registered identities (doctor or patient, never both)
consents      — one row per (patient, doctor) pair the patient has shared with
records       — medical-record metadata plus the encrypted record body
appointments  — bookings and their status
audit_log     — append-only action log

Medical detail (diagnosis, prescription, results, notes, ...) lives only in
records.encrypted_blob, encrypted by storage.crypto before it is written.

Every public method opens its own connection and commits before returning,
so concurrent callers are serialised by SQLite itself.  Per-entity updates
are single statements: consent changes are ``INSERT OR IGNORE`` / ``DELETE``
and status transitions are compare-and-set ``UPDATE ... WHERE status = ?``.

Usage
-----
    from storage.db import Database
    db = Database("data/healthvault.db")    # creates tables if missing
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from engine.config import DB_PATH
from engine.errors import NotFound, StorageUnavailable, ValidationError
from storage.crypto import decrypt_json, encrypt_json
from storage.models import (
    MEDICAL_RECORD,
    USER_PROFILE,
    Appointment,
    AppointmentStatus,
    AuditEntry,
    Doctor,
    MedicalRecord,
    Patient,
    UserProfile,
)

logger = logging.getLogger(__name__)

_DDL = """
CREATE TABLE IF NOT EXISTS users (
    uid         TEXT PRIMARY KEY,
    role        TEXT NOT NULL CHECK(role IN ('doctor', 'patient')),
    name        TEXT NOT NULL,
    email       TEXT,
    national_id TEXT,                  -- patients only
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS consents (
    patient_id  TEXT NOT NULL REFERENCES users(uid) ON DELETE CASCADE,
    doctor_id   TEXT NOT NULL REFERENCES users(uid) ON DELETE CASCADE,
    granted_at  TEXT NOT NULL,
    PRIMARY KEY (patient_id, doctor_id)
);

CREATE TABLE IF NOT EXISTS records (
    seq            INTEGER PRIMARY KEY AUTOINCREMENT,   -- insertion order
    id             TEXT    NOT NULL UNIQUE,
    patient_id     TEXT    NOT NULL REFERENCES users(uid) ON DELETE CASCADE,
    type           TEXT    NOT NULL
                       CHECK(type IN ('consultation', 'lab_result', 'allergy_note')),
    date           TEXT    NOT NULL,
    encrypted_blob TEXT    NOT NULL                    -- Fernet token from crypto.py
);
CREATE INDEX IF NOT EXISTS records_by_patient ON records (patient_id, date);

CREATE TABLE IF NOT EXISTS appointments (
    id            TEXT PRIMARY KEY,
    patient_id    TEXT NOT NULL,
    patient_name  TEXT NOT NULL,
    patient_email TEXT NOT NULL,
    doctor_id     TEXT NOT NULL,
    doctor_name   TEXT NOT NULL,
    date_time     TEXT NOT NULL,
    reason        TEXT NOT NULL,
    status        TEXT NOT NULL DEFAULT 'scheduled'
                      CHECK(status IN ('scheduled', 'completed', 'cancelled')),
    created_at    TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS appointments_by_patient ON appointments (patient_id);
CREATE INDEX IF NOT EXISTS appointments_by_doctor ON appointments (doctor_id);

CREATE TABLE IF NOT EXISTS audit_log (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    actor_id   TEXT NOT NULL,
    action     TEXT NOT NULL,
    subject_id TEXT,
    timestamp  TEXT NOT NULL                -- ISO-8601 UTC
);
"""

_APPOINTMENT_FILTERS = ("patient_id", "doctor_id")


def _iso(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class Database:
    """All stores of ``engine.ports`` on one SQLite file."""

    def __init__(self, path: Path | str = DB_PATH, timeout: float = 5.0) -> None:
        self.path = Path(path)
        self.timeout = timeout
        self.init_db()

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path), timeout=self.timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA foreign_keys=ON;")
        except sqlite3.DatabaseError:
            conn.close()
            raise
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """
        One connection, one transaction.

        Commits on success, rolls back on error, always closes.  Store
        failures (locked database, I/O errors, a corrupt file) surface as
        ``StorageUnavailable``; the caller decides whether to retry.
        Constraint violations propagate as ``sqlite3.IntegrityError`` for the
        calling method to translate.
        """
        try:
            conn = self._connect()
        except sqlite3.DatabaseError as exc:
            logger.error("Could not open database %s: %s", self.path, exc)
            raise StorageUnavailable() from exc
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.DatabaseError as exc:
            logger.error("Database operation failed: %s", exc)
            raise StorageUnavailable() from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create all tables if they do not already exist (idempotent)."""
        with self._session() as conn:
            conn.executescript(_DDL)
        logger.info("Database initialised at %s", self.path)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def create_profile(self, profile: UserProfile) -> None:
        """
        Insert a doctor or patient profile.

        Raises:
            ValidationError: if the uid is already registered (as either role).
        """
        national_id = profile.national_id if isinstance(profile, Patient) else None
        try:
            with self._session() as conn:
                conn.execute(
                    """
                    INSERT INTO users (uid, role, name, email, national_id, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (profile.uid, profile.role, profile.name, profile.email,
                     national_id, _iso(profile.created_at)),
                )
                self.append_audit(profile.uid, "profile_created", profile.uid, _conn=conn)
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"User '{profile.uid}' is already registered.", fields=["uid"]) from exc
        logger.info("Created %s profile uid=%s", profile.role, profile.uid)

    def get_profile(self, uid: str) -> UserProfile | None:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM users WHERE uid = ?", (uid,)).fetchone()
            if row is None:
                return None
            data: dict[str, Any] = dict(row)
            if data["role"] == "patient":
                shared = conn.execute(
                    "SELECT doctor_id FROM consents WHERE patient_id = ?", (uid,)
                ).fetchall()
                data["shared_with"] = frozenset(r["doctor_id"] for r in shared)
            else:
                data.pop("national_id")
        return USER_PROFILE.validate_python(data)

    def list_doctors(self) -> list[Doctor]:
        """All registered doctors ordered by name."""
        with self._session() as conn:
            rows = conn.execute(
                "SELECT uid, name, email, created_at FROM users WHERE role = 'doctor' ORDER BY name, uid"
            ).fetchall()
        return [Doctor(**dict(r)) for r in rows]

    # ------------------------------------------------------------------
    # Consent
    # ------------------------------------------------------------------

    def get_shared_with(self, patient_id: str) -> frozenset[str] | None:
        with self._session() as conn:
            exists = conn.execute(
                "SELECT 1 FROM users WHERE uid = ? AND role = 'patient'", (patient_id,)
            ).fetchone()
            if exists is None:
                return None
            rows = conn.execute(
                "SELECT doctor_id FROM consents WHERE patient_id = ?", (patient_id,)
            ).fetchall()
        return frozenset(r["doctor_id"] for r in rows)

    def update_shared_with(self, patient_id: str, doctor_id: str, add: bool) -> None:
        """
        Add or remove one doctor from a patient's consent set.

        Both directions are single idempotent statements, so concurrent
        updates on the same patient cannot lose each other.
        """
        try:
            with self._session() as conn:
                if add:
                    cur = conn.execute(
                        "INSERT OR IGNORE INTO consents (patient_id, doctor_id, granted_at) VALUES (?, ?, ?)",
                        (patient_id, doctor_id, _utc_now()),
                    )
                else:
                    cur = conn.execute(
                        "DELETE FROM consents WHERE patient_id = ? AND doctor_id = ?",
                        (patient_id, doctor_id),
                    )
                if cur.rowcount:
                    self.append_audit(
                        patient_id, "consent_granted" if add else "consent_revoked", doctor_id, _conn=conn
                    )
        except sqlite3.IntegrityError as exc:
            raise NotFound("Unknown patient or doctor.") from exc

    # ------------------------------------------------------------------
    # Medical records
    # ------------------------------------------------------------------

    def insert_record(self, patient_id: str, record: MedicalRecord) -> str:
        """
        Persist a validated record and return its newly assigned id.

        Raises:
            NotFound: *patient_id* is not a registered patient.
        """
        record_id = uuid.uuid4().hex
        body = record.model_dump(mode="json", exclude={"id", "type", "date"})
        with self._session() as conn:
            cur = conn.execute(
                """
                INSERT INTO records (id, patient_id, type, date, encrypted_blob)
                SELECT ?, uid, ?, ?, ? FROM users WHERE uid = ? AND role = 'patient'
                """,
                (record_id, record.type, _iso(record.date), encrypt_json(body), patient_id),
            )
            if cur.rowcount == 0:
                raise NotFound("Unknown patient.")
            self.append_audit(patient_id, "record_added", record_id, _conn=conn)
        return record_id

    def query_records(self, patient_id: str) -> list[MedicalRecord]:
        """All records for *patient_id*, newest ``date`` first, ties newest insert first."""
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT id, type, date, encrypted_blob FROM records
                WHERE patient_id = ?
                ORDER BY date DESC, seq DESC
                """,
                (patient_id,),
            ).fetchall()
        return [
            MEDICAL_RECORD.validate_python(
                {**decrypt_json(r["encrypted_blob"]), "id": r["id"], "type": r["type"], "date": r["date"]}
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------

    def insert_appointment(self, appointment: Appointment) -> str:
        appointment_id = uuid.uuid4().hex
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO appointments
                    (id, patient_id, patient_name, patient_email, doctor_id, doctor_name,
                     date_time, reason, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    appointment_id,
                    appointment.patient_id,
                    appointment.patient_name,
                    appointment.patient_email,
                    appointment.doctor_id,
                    appointment.doctor_name,
                    _iso(appointment.date_time),
                    appointment.reason,
                    AppointmentStatus(appointment.status).value,
                    _iso(appointment.created_at),
                ),
            )
            self.append_audit(appointment.patient_id, "appointment_booked", appointment_id, _conn=conn)
        return appointment_id

    def get_appointment(self, appointment_id: str) -> Appointment | None:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM appointments WHERE id = ?", (appointment_id,)).fetchone()
        return Appointment(**dict(row)) if row else None

    def query_appointments(self, field: str, value: str) -> list[Appointment]:
        """Equality filter on ``patient_id`` or ``doctor_id``; order is unspecified."""
        if field not in _APPOINTMENT_FILTERS:
            raise ValueError(f"field must be one of {_APPOINTMENT_FILTERS}")
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT * FROM appointments WHERE {field} = ?", (value,)
            ).fetchall()
        return [Appointment(**dict(r)) for r in rows]

    def update_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        expected: AppointmentStatus,
        actor_id: str | None = None,
    ) -> bool:
        """
        Compare-and-set the status; ``False`` if the row was not in *expected*.

        When *actor_id* is given, a successful change is audited as
        ``appointment_<status>`` in the same transaction.
        """
        status = AppointmentStatus(status)
        with self._session() as conn:
            cur = conn.execute(
                "UPDATE appointments SET status = ? WHERE id = ? AND status = ?",
                (status.value, appointment_id, AppointmentStatus(expected).value),
            )
            changed = cur.rowcount == 1
            if changed and actor_id is not None:
                self.append_audit(actor_id, f"appointment_{status.value}", appointment_id, _conn=conn)
        return changed

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def append_audit(
        self,
        actor_id: str,
        action: str,
        subject_id: str | None = None,
        *,
        _conn: sqlite3.Connection | None = None,
    ) -> None:
        """
        Append an entry to the audit log.

        Pass *_conn* to write inside the caller's transaction; otherwise the
        entry is written in its own.
        """
        sql = "INSERT INTO audit_log (actor_id, action, subject_id, timestamp) VALUES (?, ?, ?, ?)"
        params = (actor_id, action, subject_id, _utc_now())
        if _conn is not None:
            _conn.execute(sql, params)
        else:
            with self._session() as conn:
                conn.execute(sql, params)
        logger.debug("Audit: actor=%s action=%s subject=%s", actor_id, action, subject_id)

    def list_audit(self, actor_id: str | None = None) -> list[AuditEntry]:
        with self._session() as conn:
            if actor_id is None:
                rows = conn.execute("SELECT * FROM audit_log ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM audit_log WHERE actor_id = ? ORDER BY id", (actor_id,)
                ).fetchall()
        return [AuditEntry(**dict(r)) for r in rows]
