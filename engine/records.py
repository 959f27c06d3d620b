"""
engine/records.py

Domain rules for a patient's medical history.

Records are immutable once appended; there is no update or delete.  A
history is always presented newest ``date`` first, with records sharing a
date ordered most-recently-appended first.

The store performs no authorization: callers gate every read and write
through ``ConsentRegistry`` first.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from engine.errors import ValidationError
from engine.ports import RecordStore
from storage.models import MEDICAL_RECORD, MedicalRecord

logger = logging.getLogger(__name__)


def _missing_fields(exc: PydanticValidationError) -> list[str]:
    fields = []
    for err in exc.errors():
        loc = [part for part in err["loc"] if isinstance(part, str)]
        # Discriminated unions prefix the location with the tag value.
        fields.append(loc[-1] if loc else "type")
    return fields


def coerce_record(record: MedicalRecord | Mapping[str, Any]) -> MedicalRecord:
    """
    Validate a record draft (model instance or plain mapping).

    Raises:
        ValidationError: naming every missing or invalid field.
    """
    data = record.model_dump() if not isinstance(record, Mapping) else dict(record)
    try:
        return MEDICAL_RECORD.validate_python(data)
    except PydanticValidationError as exc:
        raise ValidationError(fields=_missing_fields(exc)) from exc


def merge_into_history(history: list[MedicalRecord], record: MedicalRecord) -> list[MedicalRecord]:
    """
    Return *history* with *record* inserted at its place in descending order.

    *history* must already be sorted newest first.  The new record goes in
    front of any existing record with the same date, matching ``list()``.
    """
    index = next((i for i, existing in enumerate(history) if existing.date <= record.date), len(history))
    return [*history[:index], record, *history[index:]]


class MedicalRecordStore:
    """Append-only, date-ordered medical history per patient."""

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = datetime.now) -> None:
        self.store = store
        self.clock = clock

    def append(self, patient_id: str, record: MedicalRecord | Mapping[str, Any]) -> MedicalRecord:
        """
        Validate and persist *record* for *patient_id*.

        A record without a ``date`` is stamped with the current time (a
        patient noting something today); consultations carry the visit date
        chosen by the doctor.  Validation happens before anything is written.

        Returns:
            The stored record, with its assigned ``id``.
        """
        draft = coerce_record(record)
        if draft.id is not None:
            raise ValidationError("A new record must not carry an id.", fields=["id"])
        if draft.date is None:
            draft = draft.model_copy(update={"date": self.clock()})

        record_id = self.store.insert_record(patient_id, draft)
        logger.info("Appended %s record %s for patient %s", draft.type, record_id, patient_id)
        return draft.model_copy(update={"id": record_id})

    def list(self, patient_id: str) -> list[MedicalRecord]:
        """Every record for *patient_id*, newest first."""
        return self.store.query_records(patient_id)
