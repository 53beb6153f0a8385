"""Shared test doubles: scripted language model, recording calendar and channels, fixed clock."""

import re
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import pytest
from dateutil import tz

from appointment_agent.errors import GenerationError, IntegrationError
from appointment_agent.models.booking import AppointmentRequest, BookingDraft, CalendarInfo, ExistingAppointment
from appointment_agent.services.booking_pipeline import BookingPipeline
from appointment_agent.services.local_calendar import LocalCalendar
from appointment_agent.services.notifications import NotificationFanout
from appointment_agent.services.orchestrator import AgentOrchestrator
from appointment_agent.services.session_store import InMemorySessionStore
from appointment_agent.services.slot_extractor import SlotExtractor

BUSINESS_TZ = tz.gettz("America/Chicago")

# A Monday morning
FIXED_NOW = datetime(2026, 10, 19, 8, 0, tzinfo=BUSINESS_TZ)


def fixed_clock() -> datetime:
    return FIXED_NOW


def complete_draft(**overrides) -> BookingDraft:
    values = {
        "name": "Jordan Lee",
        "email": "jordan@example.com",
        "service": "SEO",
        "date": "Monday",
        "time": "2 PM",
    }
    values.update(overrides)
    return BookingDraft(**values)


class ScriptedModel:
    """Stands in for LanguageModel. Each reply is a string, a token list, or an exception.

    Inside a token list an exception entry is raised at that point of the stream.
    """

    def __init__(self, replies: Optional[Sequence] = None, extraction=None, available: bool = True) -> None:
        self.replies = list(replies or [])
        self.extraction = extraction
        self.available = available
        self.prompts: List[List[Dict[str, str]]] = []
        self.extraction_calls = 0

    def _next_reply(self):
        return self.replies.pop(0) if self.replies else "Thanks! Tell me a bit more."

    async def complete(self, messages):
        self.prompts.append(messages)
        reply = self._next_reply()
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, list):
            return "".join(part for part in reply if isinstance(part, str))
        return reply

    async def stream(self, messages):
        self.prompts.append(messages)
        reply = self._next_reply()
        if isinstance(reply, Exception):
            raise reply
        tokens = reply if isinstance(reply, list) else re.findall(r"\S+\s*", reply)
        for token in tokens:
            if isinstance(token, Exception):
                raise token
            yield token

    async def complete_json(self, messages, schema):
        self.extraction_calls += 1
        if self.extraction is None:
            raise GenerationError("no extraction scripted")
        if isinstance(self.extraction, Exception):
            raise self.extraction
        return self.extraction


class RecordingCalendar(LocalCalendar):
    """LocalCalendar that can be told to fail at specific steps."""

    def __init__(
        self,
        calendars: Optional[Sequence[CalendarInfo]] = None,
        existing: Optional[Sequence[ExistingAppointment]] = None,
        fail_contact: bool = False,
        fail_calendars: bool = False,
        fail_conflict_check: bool = False,
        fail_create: bool = False,
    ) -> None:
        super().__init__(calendars)
        self.existing = list(existing or [])
        self.fail_contact = fail_contact
        self.fail_calendars = fail_calendars
        self.fail_conflict_check = fail_conflict_check
        self.fail_create = fail_create
        self.calls: List[str] = []

    async def find_contact_by_email(self, email):
        self.calls.append("find_contact")
        if self.fail_contact:
            raise IntegrationError("contact store unreachable")
        return await super().find_contact_by_email(email)

    async def create_contact(self, contact):
        self.calls.append("create_contact")
        return await super().create_contact(contact)

    async def list_calendars(self):
        self.calls.append("list_calendars")
        if self.fail_calendars:
            raise IntegrationError("calendar list failed", status_code=503, body="unavailable")
        return await super().list_calendars()

    async def list_appointments(self, calendar_id, range_start, range_end):
        self.calls.append("list_appointments")
        if self.fail_conflict_check:
            raise IntegrationError("appointments endpoint timed out")
        booked = await super().list_appointments(calendar_id, range_start, range_end)
        return self.existing + booked

    async def create_appointment(self, request: AppointmentRequest):
        self.calls.append("create_appointment")
        if self.fail_create:
            raise IntegrationError("GHL API error during appointment_create", status_code=422, body='{"message":"slot invalid"}')
        return await super().create_appointment(request)


class RecordingEmail:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[Dict[str, str]] = []

    async def send(self, to, subject, html):
        if self.fail:
            raise RuntimeError("email provider exploded")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return True


class RecordingSms:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[Dict[str, str]] = []

    async def send(self, to_phone, body):
        if self.fail:
            raise RuntimeError("sms provider exploded")
        self.sent.append({"to": to_phone, "body": body})
        return True


def make_orchestrator(
    model: Optional[ScriptedModel] = None,
    calendar: Optional[RecordingCalendar] = None,
    email: Optional[RecordingEmail] = None,
    sms: Optional[RecordingSms] = None,
    store: Optional[InMemorySessionStore] = None,
) -> AgentOrchestrator:
    model = model or ScriptedModel()
    calendar = calendar or RecordingCalendar()
    return AgentOrchestrator(
        store=store or InMemorySessionStore(),
        model=model,
        extractor=SlotExtractor(model, default_locale="en-US"),
        pipeline=BookingPipeline(calendar, calendar, calendar_name="", clock=fixed_clock, source="Sammy AI Assistant"),
        notifier=NotificationFanout(
            email=email or RecordingEmail(),
            sms=sms or RecordingSms(),
            business_email="owner@agency.test",
            business_phone="",
        ),
    )


@pytest.fixture
def calendar():
    return RecordingCalendar()


@pytest.fixture
def pipeline(calendar):
    return BookingPipeline(calendar, calendar, calendar_name="", clock=fixed_clock, source="Sammy AI Assistant")
