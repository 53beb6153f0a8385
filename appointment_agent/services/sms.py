from __future__ import annotations

import os
import re
from typing import Optional

import logging
import httpx

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class SmsClient:
    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_phone: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.account_sid = account_sid or os.getenv("TWILIO_ACCOUNT_SID")
        self.auth_token = auth_token or os.getenv("TWILIO_AUTH_TOKEN")
        self.from_phone = from_phone or os.getenv("TWILIO_FROM_PHONE")
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_phone)

    async def send(self, to_phone: str, body: str) -> bool:
        if not self.configured:
            logger.info("sms.stub to=%s body_preview=%s", _redact(to_phone), body[:120])
            return False

        url = f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"
        payload = {
            "To": to_phone,
            "From": self.from_phone,
            "Body": body,
        }
        auth = (self.account_sid, self.auth_token)
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(10.0, connect=5.0), auth=auth, transport=self._transport
            ) as client:
                response = await client.post(url, data=payload)
            response.raise_for_status()
            data = response.json()
            logger.info("sms.sent to=%s sid=%s", _redact(to_phone), data.get("sid"))
            return True
        except httpx.HTTPError as exc:
            logger.error("sms.error to=%s err=%s", _redact(to_phone), exc)
            return False


def format_phone_number(phone: Optional[str]) -> Optional[str]:
    """E.164 for SMS delivery: bare 10-digit numbers are treated as North American."""
    if not phone:
        return None
    cleaned = re.sub(r"\D", "", phone)
    if len(cleaned) == 10:
        return f"+1{cleaned}"
    if len(cleaned) == 11 and cleaned.startswith("1"):
        return f"+{cleaned}"
    if len(cleaned) > 10:
        return f"+{cleaned}"
    logger.warning("sms.invalid_phone phone=%s", _redact(phone))
    return None


def _redact(phone: str) -> str:
    if len(phone) <= 4:
        return "***"
    return f"***{phone[-4:]}"
