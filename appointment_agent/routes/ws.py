from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from appointment_agent.logging.flight_recorder import FlightRecorder
from appointment_agent.models.chat import ChatRequest
from appointment_agent.services.orchestrator import AgentOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_TEXT = "Sorry, I encountered an error. Please try again."


class ClientFrame(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event: str
    message: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    locale: Optional[str] = None
    stream: bool = True


class _Delivery:
    """Sends frames until the client goes away, then silently drops the rest."""

    def __init__(self, websocket: WebSocket, recorder: FlightRecorder) -> None:
        self.websocket = websocket
        self.recorder = recorder
        self.detached = False

    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        if self.detached:
            return
        try:
            await self.websocket.send_json({"event": event, **payload})
        except Exception as exc:  # noqa: BLE001
            self.detached = True
            self.recorder.log("WS", "client_detached", error=str(exc))


async def run_chat_turn(
    delivery: _Delivery, orchestrator: AgentOrchestrator, request: ChatRequest, stream: bool
) -> None:
    """Run one turn to completion even if the client disconnects part-way through."""
    await delivery.send("agent:typing", {"isTyping": True})
    try:
        if stream:
            async for event in orchestrator.stream_message(request):
                if event.type == "token":
                    await delivery.send("agent:stream", {"token": event.text})
                    continue
                await delivery.send("agent:typing", {"isTyping": False})
                await delivery.send(
                    "agent:response",
                    {
                        "message": event.text,
                        "actions": [action.model_dump() for action in event.actions],
                        "booking": event.booking,
                        "error": event.error,
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                    },
                )
        else:
            result = await orchestrator.process_message(request)
            await delivery.send("agent:typing", {"isTyping": False})
            await delivery.send(
                "agent:response",
                {
                    "message": result.text,
                    "actions": [action.model_dump() for action in result.actions],
                    "booking": result.booking,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            )
    except Exception:  # noqa: BLE001
        logger.exception("ws.turn_error session=%s", request.session_id)
        await delivery.send("agent:typing", {"isTyping": False})
        await delivery.send("agent:error", {"message": ERROR_TEXT})


@router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket) -> None:
    await websocket.accept()
    orchestrator: AgentOrchestrator = websocket.app.state.orchestrator
    session_id = websocket.query_params.get("sessionId") or str(uuid.uuid4())
    recorder = FlightRecorder(session_id)
    delivery = _Delivery(websocket, recorder)
    recorder.log("WS", "connection_accepted", session_id=session_id, remote_addr=str(websocket.client))

    try:
        while not delivery.detached:
            message = await websocket.receive()
            message_type = message.get("type")
            if message_type in {"websocket.disconnect", "websocket.close"}:
                recorder.log("WS", "disconnect", code=message.get("code"))
                break
            raw = message.get("text")
            if raw is None:
                recorder.log("WS", "binary_ignored", bytes=len(message.get("bytes") or b""))
                continue
            try:
                frame = ClientFrame.model_validate(json.loads(raw))
            except (json.JSONDecodeError, ValidationError) as exc:
                recorder.log("WS", "bad_frame", error=str(exc))
                await delivery.send("agent:error", {"message": "Malformed message"})
                continue
            if frame.event != "chat:message":
                recorder.log("WS", "unknown_event", event=frame.event)
                continue
            if not frame.message or not frame.message.strip():
                await delivery.send("agent:error", {"message": "Message is required"})
                continue

            request = ChatRequest(
                message=frame.message,
                session_id=session_id,
                user_id=frame.user_id or "anonymous",
                locale=frame.locale,
            )
            await run_chat_turn(delivery, orchestrator, request, frame.stream)
    except WebSocketDisconnect:
        recorder.log("WS", "websocket_disconnect")
