from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

import logging
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from appointment_agent.models.chat import ChatRequest, Role
from appointment_agent.services.orchestrator import AgentOrchestrator
from appointment_agent.services.prompts import assistant_name

logger = logging.getLogger(__name__)

router = APIRouter()

RECENT_SESSIONS = 10


class ChatBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    locale: Optional[str] = None


def _orchestrator(request: Request) -> AgentOrchestrator:
    return request.app.state.orchestrator


def _server_error(message: str) -> JSONResponse:
    return JSONResponse(status_code=500, content={"success": False, "error": message})


@router.post("/chat")
async def chat(body: ChatBody, request: Request) -> Any:
    if not body.message or not body.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")

    turn = ChatRequest(
        message=body.message,
        session_id=body.session_id or str(uuid.uuid4()),
        user_id=body.user_id or "anonymous",
        locale=body.locale,
    )
    try:
        result = await _orchestrator(request).process_message(turn)
    except Exception:  # noqa: BLE001
        logger.exception("chat.error session=%s", turn.session_id)
        return _server_error("Failed to process message")

    return {
        "success": True,
        "response": result.text,
        "actions": [action.model_dump() for action in result.actions],
        "sessionId": turn.session_id,
        "booking": result.booking,
    }


@router.post("/session")
async def create_session() -> Dict[str, Any]:
    return {"success": True, "sessionId": str(uuid.uuid4())}


@router.get("/history/{session_id}")
async def history(session_id: str, request: Request) -> Any:
    messages = await _orchestrator(request).store.get_history(session_id)
    return {
        "success": True,
        "history": [message.model_dump(mode="json") for message in messages],
    }


@router.get("/transcript/{session_id}")
async def transcript(session_id: str, request: Request) -> PlainTextResponse:
    messages = await _orchestrator(request).store.get_history(session_id)
    speaker = {Role.USER: "User", Role.ASSISTANT: assistant_name()}
    text = "\n\n".join(
        f"[{message.timestamp.isoformat()}] {speaker[message.role]}: {message.content}" for message in messages
    )
    return PlainTextResponse(
        text,
        headers={"Content-Disposition": f'attachment; filename="conversation-{session_id}.txt"'},
    )


@router.delete("/session/{session_id}")
async def clear_session(session_id: str, request: Request) -> Any:
    try:
        await _orchestrator(request).store.clear_session(session_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"success": True, "message": "Session cleared"}


@router.get("/sessions")
async def list_sessions(request: Request) -> Any:
    summaries = await _orchestrator(request).store.list_sessions()
    return {
        "success": True,
        "sessions": [summary.model_dump(mode="json") for summary in summaries],
    }


@router.get("/stats")
async def stats(request: Request) -> Any:
    store = _orchestrator(request).store
    try:
        summaries = await store.list_sessions()
        drafts = [await store.get_draft(summary.session_id) for summary in summaries]
    except Exception:  # noqa: BLE001
        logger.exception("stats.error")
        return _server_error("Failed to get stats")

    recent = [
        {
            "sessionId": summary.session_id,
            "messageCount": summary.message_count,
            "updatedAt": summary.updated_at.isoformat() if summary.updated_at else None,
            "name": draft.name,
            "email": draft.email,
        }
        for summary, draft in list(zip(summaries, drafts))[:RECENT_SESSIONS]
    ]
    return {
        "success": True,
        "stats": {
            "totalSessions": len(summaries),
            "totalMessages": sum(summary.message_count for summary in summaries),
            "sessionsWithEmail": sum(1 for draft in drafts if draft.email),
            "sessionsWithName": sum(1 for draft in drafts if draft.name),
            "recentSessions": recent,
        },
    }
