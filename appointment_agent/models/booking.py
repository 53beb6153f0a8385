from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class ServiceType(str, Enum):
    """Bookable services, in catalog order (the order breaks keyword ties)."""

    SOCIAL_MEDIA = "Social Media Marketing"
    SEO = "SEO"
    WEB_DESIGN = "Web Design"
    CONTENT = "Content Creation"
    PPC = "PPC Advertising"
    BRAND = "Brand Strategy"

    @classmethod
    def lookup(cls, value: Optional[str]) -> Optional["ServiceType"]:
        if not value:
            return None
        needle = value.strip().lower()
        for service in cls:
            if service.value.lower() == needle or service.name.lower() == needle:
                return service
        return None


@dataclass(frozen=True)
class BookingDraft:
    """Partial booking built up across turns.

    Every field is independently optional. Instances are immutable; the only way to
    change a draft is ``merge_draft`` in the slot extractor.
    """

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    service: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BookingDraft":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known and v not in (None, "")})

    def is_empty(self) -> bool:
        return not any(self.to_dict().values())

    def missing_fields(self) -> List[str]:
        missing = []
        if not self.name:
            missing.append("name")
        if not self.email:
            missing.append("email")
        if not self.service:
            missing.append("service")
        if not (self.date or self.time):
            missing.append("date_time")
        return missing


class ExtractionResult(BaseModel):
    """Per-turn candidate values. Never persisted on its own."""

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    service: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None

    @classmethod
    def json_schema_format(cls) -> Dict[str, Any]:
        nullable = {"type": ["string", "null"]}
        return {
            "name": "booking_slots",
            "schema": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "name": {**nullable, "description": "Customer full name"},
                    "email": {**nullable, "description": "Customer email address"},
                    "phone": {**nullable, "description": "Customer phone number"},
                    "service": {
                        "type": ["string", "null"],
                        "enum": [service.value for service in ServiceType] + [None],
                    },
                    "date": {**nullable, "description": "Weekday name, 'Tomorrow', or ISO date"},
                    "time": {**nullable, "description": "Clock time like '2 PM' or morning/afternoon/evening"},
                },
                "required": ["name", "email", "phone", "service", "date", "time"],
            },
        }


class Contact(BaseModel):
    email: EmailStr
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    source: Optional[str] = None


class CalendarInfo(BaseModel):
    id: str
    name: Optional[str] = None


class ExistingAppointment(BaseModel):
    start: datetime
    end: datetime
    id: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Providers occasionally omit the offset; their API times are UTC
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class AppointmentRequest(BaseModel):
    calendar_id: str
    contact_id: str
    start: datetime
    end: datetime
    title: str
    notes: Optional[str] = None


class Availability(BaseModel):
    available: bool
    conflicts: List[ExistingAppointment] = Field(default_factory=list)


class BookingStatus(str, Enum):
    BOOKED = "booked"
    CONTACT_FAILED = "contact_resolution_failed"
    NO_CALENDAR = "no_calendar_configured"
    INVALID_DATETIME = "invalid_datetime"
    SLOT_UNAVAILABLE = "slot_unavailable"
    CREATE_FAILED = "appointment_creation_failed"


class BookingOutcome(BaseModel):
    status: BookingStatus
    appointment_id: Optional[str] = None
    contact_id: Optional[str] = None
    calendar_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    error: Optional[str] = None
    raw_date: Optional[str] = None
    raw_time: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is BookingStatus.BOOKED
