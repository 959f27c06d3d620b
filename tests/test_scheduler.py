"""
Unit tests for appointment booking, the status state machine and the
client-side listing helpers.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pydantic
import pytest

from conftest import NOW
from engine.errors import BookingError, InvalidDate, InvalidTransition, NotFound, PastDateTime
from engine.scheduler import (
    doctor_upcoming,
    filter_by_status,
    partition_patient_view,
    sort_appointments,
)
from storage.models import Appointment, AppointmentStatus


@pytest.fixture
def scheduler(service, people):
    return service.scheduler


def _appt(when, status=AppointmentStatus.scheduled, id_="a"):
    return Appointment(
        id=id_,
        patient_id="p",
        patient_name="P",
        patient_email="p@mail.test",
        doctor_id="d",
        doctor_name="D",
        date_time=when,
        reason="checkup",
        status=status,
        created_at=NOW,
    )


# ── Booking ──────────────────────────────────────────────────────────

def test_book_creates_scheduled_appointment(scheduler):
    when = NOW + timedelta(days=2)
    appt = scheduler.book("p-priya", "d-house", when, "  Follow-up on labs ")
    assert appt.id
    assert appt.status is AppointmentStatus.scheduled
    assert appt.created_at == NOW
    assert appt.date_time == when
    assert appt.reason == "Follow-up on labs"
    assert (appt.patient_name, appt.patient_email) == ("Priya Sharma", "priya@mail.test")
    assert appt.doctor_name == "Gregory House"
    assert scheduler.store.get_appointment(appt.id) == appt


def test_book_yesterday_is_past(scheduler):
    with pytest.raises(PastDateTime):
        scheduler.book("p-priya", "d-house", NOW - timedelta(days=1), "checkup")


def test_book_within_clock_skew_is_allowed(scheduler):
    appt = scheduler.book("p-priya", "d-house", NOW - timedelta(seconds=59), "walk-in")
    assert appt.status is AppointmentStatus.scheduled
    with pytest.raises(PastDateTime):
        scheduler.book("p-priya", "d-house", NOW - timedelta(seconds=61), "walk-in")


def test_book_rejects_timezone_aware_times(scheduler):
    aware = datetime(2025, 3, 12, 10, 0, tzinfo=timezone.utc)
    with pytest.raises(BookingError) as e:
        scheduler.book("p-priya", "d-house", aware, "checkup")
    assert e.value.kind == "booking_error"
    assert scheduler.list_for_user("p-priya", "patient") == []


def test_book_requires_reason(scheduler):
    with pytest.raises(BookingError):
        scheduler.book("p-priya", "d-house", NOW + timedelta(hours=3), "   ")


def test_book_requires_known_doctor(scheduler):
    with pytest.raises(BookingError):
        scheduler.book("p-priya", "d-unknown", NOW + timedelta(hours=3), "checkup")
    with pytest.raises(BookingError):
        scheduler.book("p-priya", "p-ravi", NOW + timedelta(hours=3), "checkup")


def test_book_requires_patient_email(service, scheduler):
    service.registry.register_patient("p-noemail", "No Email", None, "111111111115")
    with pytest.raises(BookingError):
        scheduler.book("p-noemail", "d-house", NOW + timedelta(hours=3), "checkup")


def test_failed_booking_writes_nothing(scheduler):
    with pytest.raises(PastDateTime):
        scheduler.book("p-priya", "d-house", NOW - timedelta(days=3), "checkup")
    assert scheduler.list_for_user("p-priya", "patient") == []


def test_book_from_text(scheduler):
    appt = scheduler.book_from_text("p-priya", "d-house", "15-03-2025", "14:30", "Back pain")
    assert appt.date_time == datetime(2025, 3, 15, 14, 30)

    appt = scheduler.book_from_text("p-priya", "d-house", "2025-3-12", "--:--", "Back pain")
    assert appt.date_time == datetime(2025, 3, 12, 9, 0)


def test_book_from_text_rejects_bad_input(scheduler):
    with pytest.raises(InvalidDate):
        scheduler.book_from_text("p-priya", "d-house", "31-02-2026", "10:00", "Back pain")
    with pytest.raises(PastDateTime):
        scheduler.book_from_text("p-priya", "d-house", "09-03-2025", "10:00", "Back pain")
    with pytest.raises(BookingError):
        scheduler.book_from_text("p-priya", "d-house", "15-03-2025", "10:00", "")


# ── State machine ────────────────────────────────────────────────────

def test_cancel_then_cancel_again(scheduler):
    appt = scheduler.book("p-priya", "d-house", NOW + timedelta(days=1), "checkup")
    cancelled = scheduler.cancel(appt.id)
    assert cancelled.status is AppointmentStatus.cancelled

    with pytest.raises(InvalidTransition) as e:
        scheduler.cancel(appt.id)
    assert e.value.current == "cancelled"
    assert e.value.kind == "invalid_transition"


def test_complete(scheduler):
    appt = scheduler.book("p-priya", "d-house", NOW + timedelta(days=1), "checkup")
    assert scheduler.complete(appt.id).status is AppointmentStatus.completed


@pytest.mark.parametrize("first, second", [
    ("cancel", "complete"),
    ("complete", "cancel"),
    ("complete", "complete"),
])
def test_terminal_states_do_not_move(scheduler, first, second):
    appt = scheduler.book("p-priya", "d-house", NOW + timedelta(days=1), "checkup")
    getattr(scheduler, first)(appt.id)
    with pytest.raises(InvalidTransition):
        getattr(scheduler, second)(appt.id)
    expected = AppointmentStatus.cancelled if first == "cancel" else AppointmentStatus.completed
    assert scheduler.store.get_appointment(appt.id).status is expected


def test_transition_unknown_appointment(scheduler):
    with pytest.raises(NotFound):
        scheduler.cancel("nope")


def test_concurrent_transitions_have_a_single_winner(scheduler):
    appt = scheduler.book("p-priya", "d-house", NOW + timedelta(days=1), "checkup")

    def attempt(action):
        try:
            action(appt.id)
            return "won"
        except InvalidTransition:
            return "lost"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, [scheduler.cancel, scheduler.complete] * 4))

    assert outcomes.count("won") == 1
    assert outcomes.count("lost") == 7
    assert scheduler.store.get_appointment(appt.id).status in (
        AppointmentStatus.cancelled,
        AppointmentStatus.completed,
    )


# ── Listing ──────────────────────────────────────────────────────────

def test_list_for_user_by_role_and_order(scheduler):
    late = scheduler.book("p-priya", "d-house", NOW + timedelta(days=5), "b")
    early = scheduler.book("p-priya", "d-cuddy", NOW + timedelta(days=1), "a")
    other = scheduler.book("p-ravi", "d-house", NOW + timedelta(days=3), "c")

    assert [a.id for a in scheduler.list_for_user("p-priya", "patient")] == [late.id, early.id]
    assert [a.id for a in scheduler.list_for_user("p-priya", "patient", "asc")] == [early.id, late.id]
    assert [a.id for a in scheduler.list_for_user("d-house", "doctor")] == [late.id, other.id]
    assert scheduler.list_for_user("d-cuddy", "doctor", "asc") == [early]


def test_sort_rejects_unknown_order():
    with pytest.raises(ValueError):
        sort_appointments([], "sideways")


def test_patient_view_partitions_by_time_only():
    future_cancelled = _appt(NOW + timedelta(hours=2), AppointmentStatus.cancelled, "fc")
    future = _appt(NOW + timedelta(days=2), id_="f")
    past = _appt(NOW - timedelta(days=2), id_="p")
    exactly_now = _appt(NOW, id_="n")

    upcoming, previous = partition_patient_view([future_cancelled, future, past, exactly_now], NOW)
    assert [a.id for a in upcoming] == ["fc", "f"]
    assert [a.id for a in previous] == ["p", "n"]


def test_doctor_upcoming_requires_scheduled():
    appts = [
        _appt(NOW + timedelta(hours=2), AppointmentStatus.cancelled, "fc"),
        _appt(NOW + timedelta(days=2), id_="f"),
        _appt(NOW - timedelta(days=2), id_="p"),
    ]
    assert [a.id for a in doctor_upcoming(appts, NOW)] == ["f"]


def test_filter_by_status():
    appts = [
        _appt(NOW, AppointmentStatus.cancelled, "c"),
        _appt(NOW, AppointmentStatus.completed, "d"),
        _appt(NOW, id_="s"),
    ]
    assert [a.id for a in filter_by_status(appts)] == ["c", "d", "s"]
    assert [a.id for a in filter_by_status(appts, "completed")] == ["d"]
    assert [a.id for a in filter_by_status(appts, AppointmentStatus.scheduled)] == ["s"]


def test_transition_is_audited_with_the_actor(scheduler):
    appt = scheduler.book("p-priya", "d-house", NOW + timedelta(days=1), "checkup")
    scheduler.cancel(appt.id, actor_id="d-house")
    with pytest.raises(InvalidTransition):
        scheduler.complete(appt.id, actor_id="d-house")
    entries = [(e.action, e.subject_id) for e in scheduler.store.list_audit("d-house")]
    assert entries[-1] == ("appointment_cancelled", appt.id)
    assert ("appointment_completed", appt.id) not in entries


def test_appointment_instants_must_be_naive():
    with pytest.raises(pydantic.ValidationError):
        _appt(datetime(2025, 3, 12, 10, 0, tzinfo=timezone.utc))
