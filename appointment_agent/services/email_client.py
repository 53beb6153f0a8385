from __future__ import annotations

import os
from typing import Optional

import logging
import httpx

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
DEFAULT_FROM = "Sammy <onboarding@resend.dev>"


class EmailClient:
    """Transactional email over the Resend REST API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_address: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key or os.getenv("RESEND_API_KEY")
        self.from_address = from_address or os.getenv("EMAIL_FROM", DEFAULT_FROM)
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def send(self, to: str, subject: str, html: str) -> bool:
        if not self.configured:
            logger.info("email.stub to=%s subject=%s", _redact(to), subject)
            return False

        payload = {"from": self.from_address, "to": [to], "subject": subject, "html": html}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(10.0, connect=5.0), headers=headers, transport=self._transport
            ) as client:
                response = await client.post(RESEND_API_URL, json=payload)
            response.raise_for_status()
            logger.info("email.sent to=%s id=%s", _redact(to), response.json().get("id"))
            return True
        except httpx.HTTPError as exc:
            logger.error("email.error to=%s err=%s", _redact(to), exc)
            return False


def _redact(address: str) -> str:
    local, _, domain = address.partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"
