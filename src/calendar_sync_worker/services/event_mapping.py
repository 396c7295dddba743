"""Render appointments into provider-neutral calendar event drafts."""

from typing import Dict, List, Tuple

from calendar_sync_worker.models.calendar import (
    AppointmentSnapshot,
    CalendarEventDraft,
    CredentialOwner,
    EventAttendee,
    EventReminder,
)
from calendar_sync_worker.utils.time import normalize_to_utc

WALK_IN_CLIENT_NAME = "Walk-in"

# Google Calendar event colour ids
SERVICE_COLOR_MAP: Dict[str, str] = {
    "hair": "1",  # Lavender
    "nails": "2",  # Sage
    "skin": "3",  # Grape
    "massage": "4",  # Flamingo
    "makeup": "5",  # Banana
    "waxing": "6",  # Tangerine
    "default": "7",  # Peacock
}

# First matching keyword group wins
_COLOR_KEYWORDS: List[Tuple[Tuple[str, ...], str]] = [
    (("hair", "cut", "color"), "hair"),
    (("nail", "manicure", "pedicure"), "nails"),
    (("facial", "skin"), "skin"),
    (("massage",), "massage"),
    (("makeup", "make-up"), "makeup"),
    (("wax",), "waxing"),
]


def get_color_for_service(service_name: str) -> str:
    """Map a service name to a Google Calendar color id."""
    lower_name = service_name.lower()
    for keywords, category in _COLOR_KEYWORDS:
        if any(keyword in lower_name for keyword in keywords):
            return SERVICE_COLOR_MAP[category]
    return SERVICE_COLOR_MAP["default"]


def _services_label(appointment: AppointmentSnapshot) -> str:
    return ", ".join(appointment.service_names) or "Appointment"


def build_event_draft(
    appointment: AppointmentSnapshot,
    owner: CredentialOwner,
    business_name: str,
    timezone: str = "UTC",
    reminder_minutes: int = 60,
    email_reminder_minutes: int = 24 * 60,
) -> CalendarEventDraft:
    """
    Build the event an owner sees in their calendar.

    Staff get the working view (who is coming, for what); clients get
    the visit view (what, where, with whom).
    """
    services = _services_label(appointment)
    client_name = appointment.client_name or WALK_IN_CLIENT_NAME
    notes_line = [f"Notes: {appointment.notes}"] if appointment.notes else []

    if owner is CredentialOwner.STAFF:
        summary = f"{services} - {client_name}"
        description_lines = [
            f"Service: {services}",
            f"Client: {client_name}",
            f"Staff: {appointment.staff_name}",
        ] + notes_line
        attendees = (
            [EventAttendee(email=appointment.client_email, name=client_name)]
            if appointment.client_email
            else []
        )
    else:
        summary = f"{services} at {business_name}"
        description_lines = [
            f"Service: {services}",
            f"With: {appointment.staff_name}",
        ] + notes_line
        attendees = []

    return CalendarEventDraft(
        summary=summary,
        description="\n".join(description_lines),
        location=business_name,
        start=normalize_to_utc(appointment.scheduled_start),
        end=normalize_to_utc(appointment.scheduled_end),
        timezone=timezone,
        primary_service_name=appointment.primary_service_name,
        attendees=attendees,
        reminders=[
            EventReminder(method="email", minutes=email_reminder_minutes),
            EventReminder(method="popup", minutes=reminder_minutes),
        ],
    )
