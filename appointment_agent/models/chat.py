from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationMessage(BaseModel):
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)

    def as_prompt(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class ChatRequest(BaseModel):
    """Inbound turn. Field aliases follow the browser widget's camelCase payloads."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    session_id: str = Field(..., alias="sessionId")
    user_id: str = Field(default="anonymous", alias="userId")
    locale: Optional[str] = None


class ActionTaken(BaseModel):
    tool: str
    result: str
    success: bool


class TurnResult(BaseModel):
    text: str
    actions: List[ActionTaken] = Field(default_factory=list)
    booking: Optional[Dict[str, Any]] = None


class StreamEvent(BaseModel):
    """One element of a streamed turn: zero or more tokens, then exactly one completion."""

    type: Literal["token", "complete"]
    text: str
    error: bool = False
    actions: List[ActionTaken] = Field(default_factory=list)
    booking: Optional[Dict[str, Any]] = None

    @classmethod
    def token(cls, text: str) -> "StreamEvent":
        return cls(type="token", text=text)

    @classmethod
    def complete(
        cls,
        text: str,
        *,
        error: bool = False,
        actions: Optional[List[ActionTaken]] = None,
        booking: Optional[Dict[str, Any]] = None,
    ) -> "StreamEvent":
        return cls(type="complete", text=text, error=error, actions=actions or [], booking=booking)


class SessionSummary(BaseModel):
    session_id: str
    message_count: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    user_id: Optional[str] = None
