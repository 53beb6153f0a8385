"""Per-session conversation state: bounded message history plus one booking draft.

The store is the single owner of session state. Other components read a snapshot,
compute, and write back through this interface; none keeps its own copy.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from appointment_agent.models.booking import BookingDraft
from appointment_agent.models.chat import ConversationMessage, Role, SessionSummary

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20

DEFAULT_SESSION_DIR = Path(__file__).resolve().parent.parent.parent / "data" / "sessions"


class SessionStore(ABC):
    def __init__(self, history_limit: int = HISTORY_LIMIT) -> None:
        if history_limit < 1:
            raise ValueError(f"history_limit must be >= 1, got {history_limit}")
        self.history_limit = history_limit
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, session_id: str) -> asyncio.Lock:
        """Lock serialising turns for one session; turns for other sessions are unaffected."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    @abstractmethod
    async def get_history(self, session_id: str, limit: Optional[int] = None) -> List[ConversationMessage]:
        ...

    @abstractmethod
    async def append_message(
        self, session_id: str, role: Role, content: str, *, user_id: Optional[str] = None
    ) -> ConversationMessage:
        ...

    @abstractmethod
    async def get_draft(self, session_id: str) -> BookingDraft:
        ...

    @abstractmethod
    async def save_draft(self, session_id: str, draft: BookingDraft) -> None:
        ...

    async def clear_draft(self, session_id: str) -> None:
        await self.save_draft(session_id, BookingDraft())

    @abstractmethod
    async def clear_session(self, session_id: str) -> None:
        ...

    @abstractmethod
    async def list_sessions(self) -> List[SessionSummary]:
        ...

    def _trim(self, messages: List[ConversationMessage]) -> List[ConversationMessage]:
        if len(messages) > self.history_limit:
            del messages[: len(messages) - self.history_limit]
        return messages


@dataclass
class _SessionRecord:
    messages: List[ConversationMessage] = field(default_factory=list)
    draft: BookingDraft = field(default_factory=BookingDraft)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: Optional[str] = None


class InMemorySessionStore(SessionStore):
    def __init__(self, history_limit: int = HISTORY_LIMIT) -> None:
        super().__init__(history_limit)
        self._sessions: Dict[str, _SessionRecord] = {}

    def _record(self, session_id: str) -> _SessionRecord:
        record = self._sessions.get(session_id)
        if record is None:
            record = _SessionRecord()
            self._sessions[session_id] = record
        return record

    async def get_history(self, session_id: str, limit: Optional[int] = None) -> List[ConversationMessage]:
        record = self._sessions.get(session_id)
        if record is None:
            return []
        messages = list(record.messages)
        return messages[-limit:] if limit else messages

    async def append_message(
        self, session_id: str, role: Role, content: str, *, user_id: Optional[str] = None
    ) -> ConversationMessage:
        record = self._record(session_id)
        message = ConversationMessage(role=role, content=content)
        record.messages.append(message)
        self._trim(record.messages)
        record.updated_at = message.timestamp
        if user_id:
            record.user_id = user_id
        return message

    async def get_draft(self, session_id: str) -> BookingDraft:
        record = self._sessions.get(session_id)
        return record.draft if record else BookingDraft()

    async def save_draft(self, session_id: str, draft: BookingDraft) -> None:
        record = self._record(session_id)
        record.draft = draft
        record.updated_at = datetime.now(timezone.utc)

    async def clear_session(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def list_sessions(self) -> List[SessionSummary]:
        summaries = [
            SessionSummary(
                session_id=session_id,
                message_count=len(record.messages),
                created_at=record.created_at,
                updated_at=record.updated_at,
                user_id=record.user_id,
            )
            for session_id, record in self._sessions.items()
        ]
        summaries.sort(key=_recency, reverse=True)
        return summaries


class JsonFileSessionStore(SessionStore):
    """Durable store: one JSON document per session.

    Documents are named by the sha256 of the session id so distinct ids never share a
    file; the raw id lives inside the document. Disk I/O runs in a worker thread.
    """

    def __init__(self, directory: Optional[Path] = None, history_limit: int = HISTORY_LIMIT) -> None:
        super().__init__(history_limit)
        self.directory = Path(directory) if directory else DEFAULT_SESSION_DIR
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        if not session_id:
            raise ValueError(f"Unusable session id: {session_id!r}")
        digest = hashlib.sha256(session_id.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def _load(self, session_id: str) -> Optional[dict]:
        path = self._path(session_id)
        if not path.exists():
            return None
        with path.open() as f:
            return json.load(f)

    def _load_or_new(self, session_id: str) -> dict:
        document = self._load(session_id)
        if document is None:
            now = datetime.now(timezone.utc).isoformat()
            document = {
                "sessionId": session_id,
                "messages": [],
                "draft": {},
                "createdAt": now,
                "updatedAt": now,
                "metadata": {},
            }
        return document

    def _write(self, session_id: str, document: dict) -> None:
        document["updatedAt"] = datetime.now(timezone.utc).isoformat()
        self._path(session_id).write_text(json.dumps(document, indent=2))

    def _append_sync(self, session_id: str, message: ConversationMessage, user_id: Optional[str]) -> None:
        document = self._load_or_new(session_id)
        messages = [ConversationMessage.model_validate(item) for item in document["messages"]]
        messages.append(message)
        self._trim(messages)
        document["messages"] = [item.model_dump(mode="json") for item in messages]
        if user_id:
            document.setdefault("metadata", {})["userId"] = user_id
        self._write(session_id, document)

    def _save_draft_sync(self, session_id: str, draft: BookingDraft) -> None:
        document = self._load_or_new(session_id)
        document["draft"] = {k: v for k, v in draft.to_dict().items() if v is not None}
        self._write(session_id, document)

    def _remove_sync(self, session_id: str) -> None:
        path = self._path(session_id)
        if path.exists():
            path.unlink()

    def _scan_sync(self) -> List[SessionSummary]:
        summaries: List[SessionSummary] = []
        for path in self.directory.glob("*.json"):
            try:
                with path.open() as f:
                    document = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                logger.error("session_store.unreadable path=%s err=%s", path, exc)
                continue
            summaries.append(
                SessionSummary(
                    session_id=document.get("sessionId", path.stem),
                    message_count=len(document.get("messages", [])),
                    created_at=document.get("createdAt"),
                    updated_at=document.get("updatedAt"),
                    user_id=(document.get("metadata") or {}).get("userId"),
                )
            )
        return summaries

    async def get_history(self, session_id: str, limit: Optional[int] = None) -> List[ConversationMessage]:
        document = await asyncio.to_thread(self._load, session_id)
        if document is None:
            return []
        messages = [ConversationMessage.model_validate(item) for item in document.get("messages", [])]
        return messages[-limit:] if limit else messages

    async def append_message(
        self, session_id: str, role: Role, content: str, *, user_id: Optional[str] = None
    ) -> ConversationMessage:
        message = ConversationMessage(role=role, content=content)
        await asyncio.to_thread(self._append_sync, session_id, message, user_id)
        return message

    async def get_draft(self, session_id: str) -> BookingDraft:
        document = await asyncio.to_thread(self._load, session_id)
        return BookingDraft.from_dict(document.get("draft")) if document else BookingDraft()

    async def save_draft(self, session_id: str, draft: BookingDraft) -> None:
        await asyncio.to_thread(self._save_draft_sync, session_id, draft)

    async def clear_session(self, session_id: str) -> None:
        await asyncio.to_thread(self._remove_sync, session_id)

    async def list_sessions(self) -> List[SessionSummary]:
        summaries = await asyncio.to_thread(self._scan_sync)
        summaries.sort(key=_recency, reverse=True)
        return summaries


def _recency(summary: SessionSummary) -> float:
    stamp = summary.updated_at or summary.created_at
    return stamp.timestamp() if stamp else 0.0


def build_session_store() -> SessionStore:
    kind = os.getenv("SESSION_STORE", "memory").lower()
    if kind == "memory":
        return InMemorySessionStore()
    if kind == "file":
        directory = os.getenv("SESSION_DIR")
        return JsonFileSessionStore(Path(directory) if directory else None)
    raise ValueError(f"Invalid SESSION_STORE: {kind!r} (expected 'memory' or 'file')")
