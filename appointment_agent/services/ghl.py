from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import logging
import httpx

from appointment_agent.errors import IntegrationError
from appointment_agent.models.booking import AppointmentRequest, CalendarInfo, Contact, ExistingAppointment
from appointment_agent.services.backends import BookingBackend

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://services.leadconnectorhq.com"
API_VERSION = "2021-07-28"


class GHLClient(BookingBackend):
    """LeadConnector (GoHighLevel) contacts + calendars over REST.

    Every request is scoped to one location. Transport failures and non-2xx answers
    become ``IntegrationError`` carrying the status and raw body; deciding what a
    failure means for the booking is left to the caller.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        location_id: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key or os.getenv("GHL_API_KEY")
        self.location_id = location_id or os.getenv("GHL_LOCATION_ID")
        self.base_url = (base_url or os.getenv("GHL_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        if not self.api_key or not self.location_id:
            raise ValueError("GHLClient requires GHL_API_KEY and GHL_LOCATION_ID")
        self._transport = transport

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Version": API_VERSION,
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=httpx.Timeout(10.0, connect=5.0),
                transport=self._transport,
            ) as client:
                return await client.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            logger.error("ghl.transport_error method=%s path=%s err=%s", method, path, exc)
            raise IntegrationError(f"GHL {method} {path} failed: {exc}") from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        logger.error("ghl.%s_failed status=%s body=%s", action, response.status_code, response.text[:500])
        raise IntegrationError(f"GHL API error during {action}", status_code=response.status_code, body=response.text)

    @staticmethod
    def _json(response: httpx.Response, action: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise IntegrationError(f"GHL {action} returned non-JSON", body=response.text) from exc
        return data if isinstance(data, dict) else {}

    async def find_contact_by_email(self, email: str) -> Optional[str]:
        response = await self._request(
            "GET", "/contacts/search", params={"locationId": self.location_id, "email": email}
        )
        if not response.is_success:
            # A failed lookup is treated as "not found"; creation reports the real error
            logger.warning("ghl.contact_search_failed status=%s", response.status_code)
            return None
        contacts = self._json(response, "contact_search").get("contacts") or []
        if contacts:
            return contacts[0].get("id")
        return None

    async def create_contact(self, contact: Contact) -> str:
        payload = {
            "locationId": self.location_id,
            "email": contact.email,
            "firstName": contact.first_name,
            "lastName": contact.last_name,
            "phone": contact.phone or "",
            "source": contact.source or "",
        }
        response = await self._request("POST", "/contacts/", json=payload)
        self._raise_for_status(response, "contact_create")
        contact_id = (self._json(response, "contact_create").get("contact") or {}).get("id")
        if not contact_id:
            raise IntegrationError("GHL contact creation returned no id", body=response.text)
        logger.info("ghl.contact_created contact_id=%s", contact_id)
        return contact_id

    async def list_calendars(self) -> List[CalendarInfo]:
        response = await self._request("GET", "/calendars/", params={"locationId": self.location_id})
        self._raise_for_status(response, "calendar_list")
        calendars = self._json(response, "calendar_list").get("calendars") or []
        return [CalendarInfo(id=item["id"], name=item.get("name")) for item in calendars if item.get("id")]

    async def list_appointments(
        self, calendar_id: str, range_start: datetime, range_end: datetime
    ) -> List[ExistingAppointment]:
        response = await self._request(
            "GET",
            f"/calendars/{calendar_id}/appointments",
            params={
                "locationId": self.location_id,
                "startTime": range_start.isoformat(),
                "endTime": range_end.isoformat(),
            },
        )
        self._raise_for_status(response, "appointment_list")
        appointments: List[ExistingAppointment] = []
        for item in self._json(response, "appointment_list").get("appointments") or []:
            if not item.get("startTime") or not item.get("endTime"):
                logger.warning("ghl.appointment_missing_times id=%s", item.get("id"))
                continue
            appointments.append(
                ExistingAppointment(start=item["startTime"], end=item["endTime"], id=item.get("id"))
            )
        return appointments

    async def create_appointment(self, request: AppointmentRequest) -> Optional[str]:
        payload = {
            "locationId": self.location_id,
            "contactId": request.contact_id,
            "startTime": request.start.isoformat(),
            "endTime": request.end.isoformat(),
            "title": request.title,
            "notes": request.notes,
        }
        response = await self._request("POST", f"/calendars/{request.calendar_id}/appointments", json=payload)
        self._raise_for_status(response, "appointment_create")
        data = self._json(response, "appointment_create")
        appointment_id = (data.get("appointment") or {}).get("id") or data.get("id")
        if not appointment_id:
            logger.warning("ghl.appointment_created_without_id")
        return appointment_id
