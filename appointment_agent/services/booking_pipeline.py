"""Commit a completed draft against the contact store and calendar.

Steps run in a fixed order (contact, calendar, interval, conflict check, creation) and
each failure maps to its own ``BookingStatus``. The pipeline itself never raises for
collaborator problems: callers always get a ``BookingOutcome`` back.

The conflict check is check-then-create and is not atomic against the external
calendar. Two sessions booking overlapping slots at the same moment can both pass
the check; the calendar provider offers no compare-and-swap to close that window.
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Optional, Tuple

import logging
from pydantic import ValidationError

from appointment_agent.errors import IntegrationError
from appointment_agent.logging.flight_recorder import FlightRecorder
from appointment_agent.models.booking import (
    AppointmentRequest,
    Availability,
    BookingDraft,
    BookingOutcome,
    BookingStatus,
    CalendarInfo,
    Contact,
)
from appointment_agent.services import calendar as scheduling
from appointment_agent.services.backends import BookingBackend, CalendarProvider, ContactStore
from appointment_agent.services.ghl import GHLClient
from appointment_agent.services.local_calendar import LocalCalendar
from appointment_agent.services.prompts import assistant_name

logger = logging.getLogger(__name__)


def split_name(name: str) -> Tuple[str, str]:
    parts = name.strip().split(None, 1)
    if not parts:
        return "", ""
    return parts[0], parts[1] if len(parts) > 1 else ""


class BookingPipeline:
    def __init__(
        self,
        contacts: ContactStore,
        calendar: CalendarProvider,
        *,
        calendar_name: Optional[str] = None,
        clock: Optional[scheduling.Clock] = None,
        source: Optional[str] = None,
    ) -> None:
        self.contacts = contacts
        self.calendar = calendar
        self.calendar_name = calendar_name if calendar_name is not None else os.getenv("GHL_CALENDAR_NAME")
        self.clock = clock or scheduling.system_clock
        self.source = source or f"{assistant_name()} AI Assistant"

    async def commit(self, draft: BookingDraft, recorder: Optional[FlightRecorder] = None) -> BookingOutcome:
        recorder = recorder or FlightRecorder()

        with recorder.stage("CONTACT"):
            contact_id, error = await self.resolve_contact(draft)
        if contact_id is None:
            return self._fail(recorder, BookingStatus.CONTACT_FAILED, error, draft)

        with recorder.stage("CALENDAR"):
            calendar, error = await self.resolve_calendar()
        if calendar is None:
            return self._fail(recorder, BookingStatus.NO_CALENDAR, error, draft, contact_id=contact_id)

        try:
            start, end = scheduling.resolve_interval(draft.date, draft.time, self.clock())
        except scheduling.InvalidDateTime as exc:
            return self._fail(
                recorder, BookingStatus.INVALID_DATETIME, str(exc), draft,
                contact_id=contact_id, calendar_id=calendar.id,
            )

        with recorder.stage("CONFLICT"):
            availability = await self.check_availability(calendar.id, start, end)
        if not availability.available:
            return self._fail(
                recorder, BookingStatus.SLOT_UNAVAILABLE,
                f"{len(availability.conflicts)} existing appointment(s) overlap {start.isoformat()}",
                draft, contact_id=contact_id, calendar_id=calendar.id, start=start, end=end,
            )

        request = AppointmentRequest(
            calendar_id=calendar.id,
            contact_id=contact_id,
            start=start,
            end=end,
            title=f"{draft.service} - {draft.name}",
            notes=self._notes(draft),
        )
        with recorder.stage("APPOINTMENT"):
            try:
                appointment_id = await self.calendar.create_appointment(request)
            except IntegrationError as exc:
                return self._fail(
                    recorder, BookingStatus.CREATE_FAILED, str(exc), draft,
                    contact_id=contact_id, calendar_id=calendar.id, start=start, end=end,
                )

        logger.info(
            "booking.booked appointment_id=%s calendar_id=%s start=%s",
            appointment_id,
            calendar.id,
            start.isoformat(),
        )
        recorder.log("APPOINTMENT", "booked", appointment_id=appointment_id, start=start.isoformat())
        return BookingOutcome(
            status=BookingStatus.BOOKED,
            appointment_id=appointment_id,
            contact_id=contact_id,
            calendar_id=calendar.id,
            start=start,
            end=end,
            raw_date=draft.date,
            raw_time=draft.time,
        )

    async def resolve_contact(self, draft: BookingDraft) -> Tuple[Optional[str], Optional[str]]:
        first_name, last_name = split_name(draft.name or "")
        try:
            contact = Contact(
                email=draft.email,
                first_name=first_name,
                last_name=last_name,
                phone=draft.phone,
                source=self.source,
            )
        except ValidationError as exc:
            return None, f"contact rejected: {exc.errors()[0].get('msg', exc)}"
        try:
            existing = await self.contacts.find_contact_by_email(contact.email)
            if existing:
                logger.info("booking.contact_reused contact_id=%s", existing)
                return existing, None
            return await self.contacts.create_contact(contact), None
        except IntegrationError as exc:
            return None, str(exc)

    async def resolve_calendar(self) -> Tuple[Optional[CalendarInfo], Optional[str]]:
        try:
            calendars = await self.calendar.list_calendars()
        except IntegrationError as exc:
            return None, str(exc)
        if not calendars:
            return None, "No calendar found. Please configure a calendar."
        if self.calendar_name:
            wanted = self.calendar_name.lower()
            for calendar in calendars:
                if calendar.name and wanted in calendar.name.lower():
                    return calendar, None
            logger.warning("booking.calendar_name_not_found name=%s; using first calendar", self.calendar_name)
        return calendars[0], None

    async def check_availability(self, calendar_id: str, start: datetime, end: datetime) -> Availability:
        """Best-effort overlap check over the whole day. Any failure counts as available."""
        day_start, day_end = scheduling.day_bounds(start)
        try:
            existing = await self.calendar.list_appointments(calendar_id, day_start, day_end)
            conflicts = scheduling.find_conflicts(existing, start, end)
        except Exception as exc:  # noqa: BLE001
            logger.warning("booking.conflict_check_failed calendar_id=%s err=%s; failing open", calendar_id, exc)
            return Availability(available=True)
        return Availability(available=not conflicts, conflicts=conflicts)

    def _notes(self, draft: BookingDraft) -> str:
        lines = [f"Booked via {self.source}", f"Service: {draft.service}", f"Email: {draft.email}"]
        if draft.phone:
            lines.append(f"Phone: {draft.phone}")
        return "\n".join(lines)

    @staticmethod
    def _fail(
        recorder: FlightRecorder,
        status: BookingStatus,
        error: Optional[str],
        draft: BookingDraft,
        **fields,
    ) -> BookingOutcome:
        logger.warning("booking.failed status=%s error=%s", status.value, error)
        recorder.log("APPOINTMENT", "failed", status=status.value, error=error)
        return BookingOutcome(status=status, error=error, raw_date=draft.date, raw_time=draft.time, **fields)


def build_calendar() -> BookingBackend:
    if os.getenv("GHL_API_KEY") and os.getenv("GHL_LOCATION_ID"):
        return GHLClient()
    logger.info("booking.local_calendar GHL credentials missing; bookings stay in-process")
    return LocalCalendar()


def build_pipeline(backend: Optional[BookingBackend] = None) -> BookingPipeline:
    backend = backend or build_calendar()
    return BookingPipeline(backend, backend)
