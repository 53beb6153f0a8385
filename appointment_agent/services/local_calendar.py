from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import logging

from appointment_agent.models.booking import AppointmentRequest, CalendarInfo, Contact, ExistingAppointment
from appointment_agent.services.backends import BookingBackend

logger = logging.getLogger(__name__)

DEFAULT_CALENDARS = (CalendarInfo(id="local-consultations", name="Consultations"),)


def _short_id(prefix: str, raw: str) -> str:
    return f"{prefix}_{hashlib.sha256(raw.encode()).hexdigest()[:12]}"


class LocalCalendar(BookingBackend):
    """In-process contacts and calendar, used when no CRM credentials are configured."""

    def __init__(self, calendars: Optional[Iterable[CalendarInfo]] = None) -> None:
        self.calendars: List[CalendarInfo] = list(DEFAULT_CALENDARS if calendars is None else calendars)
        self.contacts: Dict[str, Contact] = {}
        self._contact_ids: Dict[str, str] = {}
        self.appointments: Dict[str, AppointmentRequest] = {}

    async def find_contact_by_email(self, email: str) -> Optional[str]:
        return self._contact_ids.get(email.lower())

    async def create_contact(self, contact: Contact) -> str:
        key = contact.email.lower()
        contact_id = _short_id("contact", key)
        self._contact_ids[key] = contact_id
        self.contacts[contact_id] = contact
        logger.info("local_calendar.contact_created contact_id=%s", contact_id)
        return contact_id

    async def list_calendars(self) -> List[CalendarInfo]:
        return list(self.calendars)

    async def list_appointments(
        self, calendar_id: str, range_start: datetime, range_end: datetime
    ) -> List[ExistingAppointment]:
        return [
            ExistingAppointment(id=appointment_id, start=request.start, end=request.end)
            for appointment_id, request in self.appointments.items()
            if request.calendar_id == calendar_id and request.start <= range_end and request.end >= range_start
        ]

    async def create_appointment(self, request: AppointmentRequest) -> Optional[str]:
        appointment_id = _short_id(
            "appt", f"{request.calendar_id}:{request.start.isoformat()}:{request.contact_id}"
        )
        self.appointments[appointment_id] = request
        logger.info(
            "local_calendar.appointment_created appointment_id=%s start=%s",
            appointment_id,
            request.start.isoformat(),
        )
        return appointment_id
