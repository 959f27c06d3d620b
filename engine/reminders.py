"""
engine/reminders.py

Which appointments deserve a "coming up soon" reminder right now.

Pure functions of their inputs.  Dismissing a reminder is presentation
state (a set of appointment ids the caller keeps); it never touches the
appointment itself.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from engine.config import REMINDER_WINDOW
from storage.models import Appointment, AppointmentStatus, UserRole


def due_reminders(appointments: Iterable[Appointment], now: datetime) -> list[Appointment]:
    """Scheduled appointments falling in ``(now, now + 24h]``, in input order."""
    horizon = now + REMINDER_WINDOW
    return [
        a for a in appointments
        if a.status is AppointmentStatus.scheduled and now < a.date_time <= horizon
    ]


def visible_reminders(due: Iterable[Appointment], dismissed_ids: Iterable[str]) -> list[Appointment]:
    dismissed = set(dismissed_ids)
    return [a for a in due if a.id not in dismissed]


def reminder_message(appointment: Appointment, viewer_role: UserRole | str) -> str:
    at = appointment.date_time.strftime("%H:%M")
    if UserRole(viewer_role) is UserRole.doctor:
        who = appointment.patient_name
    else:
        who = f"Dr. {appointment.doctor_name}"
    return f"Reminder: You have an appointment with {who} tomorrow at {at}."
