"""
Unit tests for the medical-record domain layer: per-type validation,
ordering, and the in-memory merge helper.
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW
from engine.errors import NotFound, ValidationError
from engine.records import MedicalRecordStore, coerce_record, merge_into_history
from storage.models import AllergyNote, Consultation, LabResult, Severity

D1 = datetime(2024, 1, 10, 9, 0)
D2 = datetime(2024, 6, 2, 9, 0)
D3 = datetime(2025, 2, 20, 9, 0)


def _lab(date=None, name="CBC"):
    return {"type": "lab_result", "date": date, "test_name": name, "result_summary": "Within normal limits"}


@pytest.fixture
def records(db, clock, people):
    return MedicalRecordStore(db, clock=clock)


# ── Validation ───────────────────────────────────────────────────────

def test_lab_result_without_summary_is_rejected(records, db):
    with pytest.raises(ValidationError) as e:
        records.append("p-priya", {"type": "lab_result", "test_name": "Lipid panel"})
    assert e.value.fields == ["result_summary"]
    assert "result_summary" in e.value.message
    assert db.query_records("p-priya") == []


def test_blank_fields_count_as_missing(records):
    with pytest.raises(ValidationError) as e:
        records.append("p-priya", {"type": "allergy_note", "allergen": "  ", "reaction": "", "severity": "mild"})
    assert e.value.fields == ["allergen", "reaction"]


def test_allergy_severity_is_required_and_constrained(records):
    with pytest.raises(ValidationError) as e:
        records.append("p-priya", {"type": "allergy_note", "allergen": "Peanuts", "reaction": "Hives"})
    assert e.value.fields == ["severity"]

    with pytest.raises(ValidationError) as e:
        records.append(
            "p-priya",
            {"type": "allergy_note", "allergen": "Peanuts", "reaction": "Hives", "severity": "extreme"},
        )
    assert e.value.fields == ["severity"]


def test_consultation_requires_all_clinical_fields(records):
    with pytest.raises(ValidationError) as e:
        records.append("p-priya", {"type": "consultation", "doctor_id": "d-house", "doctor_name": "House"})
    assert e.value.fields == ["diagnosis", "prescription"]


@pytest.mark.parametrize("draft", [{}, {"type": "x-ray"}, {"test_name": "CBC", "result_summary": "ok"}])
def test_unknown_or_missing_type(draft):
    with pytest.raises(ValidationError) as e:
        coerce_record(draft)
    assert e.value.fields == ["type"]


def test_new_record_may_not_carry_an_id(records):
    with pytest.raises(ValidationError) as e:
        records.append("p-priya", {**_lab(D1), "id": "forged"})
    assert e.value.fields == ["id"]


def test_append_to_unknown_patient(records):
    with pytest.raises(NotFound):
        records.append("p-nobody", _lab(D1))


def test_records_belong_to_patients_only(records, db):
    with pytest.raises(NotFound):
        records.append("d-house", _lab(D1))
    assert db.query_records("d-house") == []
    assert [e.action for e in db.list_audit("d-house")] == ["profile_created"]


def test_timezone_aware_dates_are_rejected(records, db):
    aware = datetime(2024, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=5, minutes=30)))
    with pytest.raises(ValidationError) as e:
        records.append("p-priya", _lab(aware))
    assert e.value.fields == ["date"]
    assert db.query_records("p-priya") == []


# ── Append / list ────────────────────────────────────────────────────

def test_append_assigns_id_and_returns_typed_record(records):
    stored = records.append(
        "p-priya",
        AllergyNote(allergen="Penicillin", reaction="Rash", severity=Severity.severe, notes=" since 2019 "),
    )
    assert isinstance(stored, AllergyNote)
    assert stored.id
    assert stored.date == NOW  # stamped with the clock when no date is given
    assert stored.notes == "since 2019"
    assert records.list("p-priya") == [stored]


def test_consultation_keeps_the_visit_date(records):
    stored = records.append(
        "p-priya",
        Consultation(
            date=D1,
            doctor_id="d-house",
            doctor_name="Gregory House",
            diagnosis="Hypertension",
            prescription="Amlodipine 5mg",
        ),
    )
    assert stored.date == D1
    [listed] = records.list("p-priya")
    assert isinstance(listed, Consultation)
    assert listed.diagnosis == "Hypertension"


@pytest.mark.parametrize("insert_order", [(D1, D2, D3), (D2, D3, D1), (D3, D1, D2), (D3, D2, D1)])
def test_history_is_newest_first(records, insert_order):
    for date in insert_order:
        records.append("p-priya", _lab(date))
    assert [r.date for r in records.list("p-priya")] == [D3, D2, D1]


def test_same_date_most_recent_append_first(records):
    first = records.append("p-priya", _lab(D2, "first"))
    second = records.append("p-priya", _lab(D2, "second"))
    older = records.append("p-priya", _lab(D1, "older"))
    assert [r.id for r in records.list("p-priya")] == [second.id, first.id, older.id]


def test_histories_are_per_patient(records):
    records.append("p-priya", _lab(D1))
    assert records.list("p-ravi") == []


def test_record_body_is_encrypted_at_rest(records, db):
    records.append(
        "p-priya",
        {"type": "consultation", "date": D1, "doctor_id": "d-house", "doctor_name": "Gregory House",
         "diagnosis": "Sarcoidosis", "prescription": "Prednisone"},
    )
    conn = sqlite3.connect(str(db.path))
    try:
        [(blob,)] = conn.execute("SELECT encrypted_blob FROM records").fetchall()
    finally:
        conn.close()
    assert "Sarcoidosis" not in blob
    assert "Prednisone" not in blob


def test_records_are_immutable(records):
    stored = records.append("p-priya", _lab(D1))
    with pytest.raises(Exception):
        stored.test_name = "changed"


# ── merge_into_history ───────────────────────────────────────────────

def _model(date, name):
    return LabResult(id=name, date=date, test_name=name, result_summary="ok")


def test_merge_into_history_places_record_by_date():
    history = [_model(D3, "c"), _model(D1, "a")]
    merged = merge_into_history(history, _model(D2, "b"))
    assert [r.id for r in merged] == ["c", "b", "a"]
    assert [r.id for r in history] == ["c", "a"]


def test_merge_into_history_edges():
    assert [r.id for r in merge_into_history([], _model(D1, "a"))] == ["a"]
    history = [_model(D2, "b")]
    assert [r.id for r in merge_into_history(history, _model(D3, "c"))] == ["c", "b"]
    assert [r.id for r in merge_into_history(history, _model(D1, "a"))] == ["b", "a"]
    # Equal dates: the newcomer goes first, matching list().
    assert [r.id for r in merge_into_history(history, _model(D2, "b2"))] == ["b2", "b"]


def test_merge_matches_store_order(records):
    view = []
    for date in (D2, D3, D1, D2):
        view = merge_into_history(view, records.append("p-priya", _lab(date)))
    assert [r.id for r in view] == [r.id for r in records.list("p-priya")]


@pytest.mark.parametrize("notes", ["", "   ", None])
def test_blank_notes_are_dropped(records, notes):
    stored = records.append("p-priya", {**_lab(D1), "notes": notes})
    assert stored.notes is None
    assert records.list("p-priya")[0].notes is None
