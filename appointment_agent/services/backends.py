from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from appointment_agent.models.booking import AppointmentRequest, CalendarInfo, Contact, ExistingAppointment


class ContactStore(ABC):
    @abstractmethod
    async def find_contact_by_email(self, email: str) -> Optional[str]:
        """Return the id of the contact registered under ``email``, if any."""

    @abstractmethod
    async def create_contact(self, contact: Contact) -> str:
        ...


class CalendarProvider(ABC):
    @abstractmethod
    async def list_calendars(self) -> List[CalendarInfo]:
        ...

    @abstractmethod
    async def list_appointments(
        self, calendar_id: str, range_start: datetime, range_end: datetime
    ) -> List[ExistingAppointment]:
        ...

    @abstractmethod
    async def create_appointment(self, request: AppointmentRequest) -> Optional[str]:
        """Create the appointment and return its id (None if the provider did not echo one)."""


class BookingBackend(ContactStore, CalendarProvider, ABC):
    """A system that is both the contact store and the calendar (a CRM such as GHL)."""
