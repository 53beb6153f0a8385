"""Best-effort booking notifications.

``NotificationFanout.dispatch`` spawns one background task per booking and returns it
without awaiting. Inside that task each channel runs behind its own error boundary, so
an exception on one channel is logged and recorded as ``False`` while the others still
run. Nothing here can change the outcome of the turn that triggered it.
"""

from __future__ import annotations

import asyncio
import html
import os
from dataclasses import asdict, dataclass
from typing import Awaitable, Optional, Set

import logging

from appointment_agent.logging.flight_recorder import FlightRecorder
from appointment_agent.models.booking import BookingDraft, BookingOutcome
from appointment_agent.services.calendar import create_google_event_link
from appointment_agent.services.email_client import EmailClient
from appointment_agent.services.prompts import assistant_name, business_name
from appointment_agent.services.sms import SmsClient, format_phone_number

logger = logging.getLogger(__name__)


@dataclass
class NotificationReport:
    """Per-channel result: True sent, False failed or stubbed, None skipped (no destination)."""

    customer_email: Optional[bool] = None
    business_email: Optional[bool] = None
    customer_sms: Optional[bool] = None
    business_sms: Optional[bool] = None

    def to_dict(self):
        return asdict(self)


def _when(draft: BookingDraft) -> str:
    return " at ".join(part for part in (draft.date, draft.time) if part)


class NotificationFanout:
    def __init__(
        self,
        email: Optional[EmailClient] = None,
        sms: Optional[SmsClient] = None,
        business_email: Optional[str] = None,
        business_phone: Optional[str] = None,
    ) -> None:
        self.email = email or EmailClient()
        self.sms = sms or SmsClient()
        self.business_email = business_email if business_email is not None else os.getenv("BUSINESS_EMAIL")
        self.business_phone = business_phone if business_phone is not None else os.getenv("BUSINESS_PHONE")
        self._tasks: Set[asyncio.Task] = set()

    def dispatch(
        self, draft: BookingDraft, outcome: BookingOutcome, recorder: Optional[FlightRecorder] = None
    ) -> "asyncio.Task[NotificationReport]":
        task = asyncio.create_task(self.send_all(draft, outcome, recorder))
        # Keep a strong reference until the task finishes; asyncio only holds weak ones
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight fan-outs (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def send_all(
        self, draft: BookingDraft, outcome: BookingOutcome, recorder: Optional[FlightRecorder] = None
    ) -> NotificationReport:
        customer_phone = format_phone_number(draft.phone)
        business_phone = format_phone_number(self.business_phone)

        customer_email, business_email, customer_sms, business_sms = await asyncio.gather(
            self._guarded("customer_email", self._customer_email(draft, outcome) if draft.email else None),
            self._guarded(
                "business_email",
                self.email.send(self.business_email, f"New booking: {draft.service} - {draft.name}", self._business_html(draft))
                if self.business_email
                else None,
            ),
            self._guarded(
                "customer_sms",
                self.sms.send(customer_phone, self._customer_sms(draft)) if customer_phone else None,
            ),
            self._guarded(
                "business_sms",
                self.sms.send(business_phone, self._business_sms(draft)) if business_phone else None,
            ),
        )
        report = NotificationReport(
            customer_email=customer_email,
            business_email=business_email,
            customer_sms=customer_sms,
            business_sms=business_sms,
        )
        logger.info("notify.done report=%s appointment_id=%s", report.to_dict(), outcome.appointment_id)
        if recorder:
            recorder.log("NOTIFY", "fanout_done", **report.to_dict())
        return report

    @staticmethod
    async def _guarded(channel: str, job: Optional[Awaitable[bool]]) -> Optional[bool]:
        if job is None:
            logger.info("notify.skipped channel=%s", channel)
            return None
        try:
            return bool(await job)
        except Exception:  # noqa: BLE001
            logger.exception("notify.channel_error channel=%s", channel)
            return False

    async def _customer_email(self, draft: BookingDraft, outcome: BookingOutcome) -> bool:
        when = _when(draft) or "To be confirmed"
        rows = [("Name", draft.name), ("Service", draft.service), ("Date & Time", when), ("Email", draft.email)]
        if draft.phone:
            rows.append(("Phone", draft.phone))
        details = "".join(
            f"<tr><td>{html.escape(label)}</td><td><strong>{html.escape(value or '')}</strong></td></tr>"
            for label, value in rows
        )
        link = ""
        if outcome.start and outcome.end:
            url = create_google_event_link(
                f"{draft.service} with {business_name()}", outcome.start, outcome.end, f"Booked via {assistant_name()}"
            )
            link = f'<p><a href="{html.escape(url)}">Add to Google Calendar</a></p>'
        body = (
            f"<h2>Appointment Confirmed!</h2>"
            f"<p>Hi {html.escape(draft.name or '')}, your appointment has been booked.</p>"
            f"<table>{details}</table>{link}"
            f"<p>Sent by {html.escape(assistant_name())}, your AI assistant at {html.escape(business_name())}.</p>"
        )
        return await self.email.send(draft.email, f"Appointment Confirmed - {draft.service}", body)

    @staticmethod
    def _business_html(draft: BookingDraft) -> str:
        rows = [
            ("Name", draft.name),
            ("Email", draft.email),
            ("Phone", draft.phone or "Not provided"),
            ("Service", draft.service),
            ("When", _when(draft) or "Not specified"),
        ]
        details = "".join(
            f"<tr><td>{html.escape(label)}</td><td>{html.escape(value or '')}</td></tr>" for label, value in rows
        )
        return f"<h2>New booking via {html.escape(assistant_name())}</h2><table>{details}</table>"

    @staticmethod
    def _customer_sms(draft: BookingDraft) -> str:
        return (
            f"Hi {draft.name}! Your appointment is confirmed.\n"
            f"Service: {draft.service}\n"
            f"When: {_when(draft) or 'To be confirmed'}\n"
            f"Thank you for choosing {business_name()}!"
        )

    @staticmethod
    def _business_sms(draft: BookingDraft) -> str:
        return (
            f"New booking via {assistant_name()}!\n"
            f"{draft.name}\n{draft.email}\n{draft.phone or 'Phone not provided'}\n"
            f"{draft.service}\n{_when(draft) or 'Not specified'}"
        )
