from datetime import datetime, timedelta

import pytest

from appointment_agent.models.booking import BookingStatus, CalendarInfo, ExistingAppointment
from appointment_agent.services.booking_pipeline import BookingPipeline, split_name

from conftest import BUSINESS_TZ, RecordingCalendar, complete_draft, fixed_clock

# "Monday at 2 PM" from the fixed Monday clock
SLOT_START = datetime(2026, 10, 26, 14, 0, tzinfo=BUSINESS_TZ)


def make_pipeline(calendar, calendar_name=""):
    return BookingPipeline(calendar, calendar, calendar_name=calendar_name, clock=fixed_clock, source="Sammy AI Assistant")


def test_split_name():
    assert split_name("Jordan Lee") == ("Jordan", "Lee")
    assert split_name("Maria de la Cruz") == ("Maria", "de la Cruz")
    assert split_name("Cher") == ("Cher", "")
    assert split_name("   ") == ("", "")


@pytest.mark.asyncio
async def test_successful_commit(calendar, pipeline):
    outcome = await pipeline.commit(complete_draft(phone="+15125550100"))

    assert outcome.status is BookingStatus.BOOKED
    assert outcome.success
    assert outcome.start == SLOT_START
    assert outcome.end == SLOT_START + timedelta(hours=1)
    assert outcome.calendar_id == "local-consultations"
    assert outcome.appointment_id in calendar.appointments
    assert calendar.calls == ["find_contact", "create_contact", "list_calendars", "list_appointments", "create_appointment"]

    request = calendar.appointments[outcome.appointment_id]
    assert request.title == "SEO - Jordan Lee"
    assert request.notes == (
        "Booked via Sammy AI Assistant\nService: SEO\nEmail: jordan@example.com\nPhone: +15125550100"
    )
    assert request.contact_id == outcome.contact_id

    contact = calendar.contacts[outcome.contact_id]
    assert (contact.first_name, contact.last_name) == ("Jordan", "Lee")
    assert contact.source == "Sammy AI Assistant"


@pytest.mark.asyncio
async def test_notes_omit_missing_phone(calendar, pipeline):
    outcome = await pipeline.commit(complete_draft())
    assert "Phone" not in calendar.appointments[outcome.appointment_id].notes


@pytest.mark.asyncio
async def test_existing_contact_is_reused(calendar, pipeline):
    first = await pipeline.commit(complete_draft())
    second = await pipeline.commit(complete_draft(date="Tuesday"))

    assert second.success
    assert second.contact_id == first.contact_id
    assert calendar.calls.count("create_contact") == 1


@pytest.mark.asyncio
async def test_contact_failure():
    calendar = RecordingCalendar(fail_contact=True)
    outcome = await make_pipeline(calendar).commit(complete_draft())

    assert outcome.status is BookingStatus.CONTACT_FAILED
    assert "unreachable" in outcome.error
    assert "list_calendars" not in calendar.calls
    assert calendar.appointments == {}


@pytest.mark.asyncio
async def test_invalid_email_never_reaches_the_contact_store():
    calendar = RecordingCalendar()
    outcome = await make_pipeline(calendar).commit(complete_draft(email="jordan-at-example"))

    assert outcome.status is BookingStatus.CONTACT_FAILED
    assert calendar.calls == []


@pytest.mark.asyncio
async def test_no_calendar_configured():
    calendar = RecordingCalendar(calendars=[])
    outcome = await make_pipeline(calendar).commit(complete_draft())

    assert outcome.status is BookingStatus.NO_CALENDAR
    assert outcome.contact_id is not None
    assert "create_appointment" not in calendar.calls


@pytest.mark.asyncio
async def test_calendar_listing_failure_counts_as_no_calendar():
    calendar = RecordingCalendar(fail_calendars=True)
    outcome = await make_pipeline(calendar).commit(complete_draft())
    assert outcome.status is BookingStatus.NO_CALENDAR


@pytest.mark.asyncio
async def test_preferred_calendar_is_chosen_by_name():
    calendars = [CalendarInfo(id="cal-sales", name="Sales Calls"), CalendarInfo(id="cal-consult", name="Free Consultation")]
    calendar = RecordingCalendar(calendars=calendars)

    outcome = await make_pipeline(calendar, calendar_name="consultation").commit(complete_draft())
    assert outcome.calendar_id == "cal-consult"

    fallback = await make_pipeline(RecordingCalendar(calendars=calendars), calendar_name="Nope").commit(complete_draft())
    assert fallback.calendar_id == "cal-sales"


@pytest.mark.asyncio
async def test_invalid_datetime_keeps_raw_values():
    calendar = RecordingCalendar()
    outcome = await make_pipeline(calendar).commit(complete_draft(date="someday", time="teatime"))

    assert outcome.status is BookingStatus.INVALID_DATETIME
    assert outcome.raw_date == "someday"
    assert outcome.raw_time == "teatime"
    assert "list_appointments" not in calendar.calls


@pytest.mark.asyncio
async def test_overlapping_appointment_blocks_the_slot():
    existing = ExistingAppointment(id="taken", start=SLOT_START + timedelta(minutes=30), end=SLOT_START + timedelta(minutes=90))
    calendar = RecordingCalendar(existing=[existing])

    outcome = await make_pipeline(calendar).commit(complete_draft())

    assert outcome.status is BookingStatus.SLOT_UNAVAILABLE
    assert outcome.start == SLOT_START
    assert calendar.appointments == {}


@pytest.mark.asyncio
async def test_back_to_back_appointment_does_not_block():
    existing = ExistingAppointment(id="before", start=SLOT_START - timedelta(hours=1), end=SLOT_START)
    outcome = await make_pipeline(RecordingCalendar(existing=[existing])).commit(complete_draft())
    assert outcome.success


@pytest.mark.asyncio
async def test_second_booking_for_same_slot_conflicts(calendar, pipeline):
    assert (await pipeline.commit(complete_draft())).success
    again = await pipeline.commit(complete_draft(name="Someone Else", email="else@example.com"))
    assert again.status is BookingStatus.SLOT_UNAVAILABLE


@pytest.mark.asyncio
async def test_conflict_check_failure_fails_open():
    calendar = RecordingCalendar(fail_conflict_check=True)
    outcome = await make_pipeline(calendar).commit(complete_draft())

    assert outcome.success
    assert "create_appointment" in calendar.calls


@pytest.mark.asyncio
async def test_creation_failure():
    calendar = RecordingCalendar(fail_create=True)
    outcome = await make_pipeline(calendar).commit(complete_draft())

    assert outcome.status is BookingStatus.CREATE_FAILED
    assert not outcome.success
    assert "appointment_create" in outcome.error
    assert outcome.start == SLOT_START
