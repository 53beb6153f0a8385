"""Per-turn stage tracing.

A ``FlightRecorder`` follows one conversation turn (or one HTTP request) and keeps an
ordered list of stage timings and point events. Values under contact-like keys are
masked before they are stored or logged, so traces can be shipped as-is.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

import logging
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

STAGES = (
    "HTTP",
    "WS",
    "SESSION",
    "EXTRACT",
    "GENERATE",
    "POLICY",
    "CONTACT",
    "CALENDAR",
    "CONFLICT",
    "APPOINTMENT",
    "NOTIFY",
)

_MASKED_KEYS = frozenset({"name", "email", "phone", "to"})


@dataclass
class StageEvent:
    stage: str
    message: str
    elapsed_ms: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    failed: bool = False


class FlightRecorder:
    def __init__(self, session_id: Optional[str] = None) -> None:
        self.session_id = session_id
        self.events: List[StageEvent] = []
        self._started = time.perf_counter()

    def _since_start(self) -> float:
        return round((time.perf_counter() - self._started) * 1000, 2)

    def _append(self, event: StageEvent) -> None:
        if event.stage not in STAGES:
            logger.warning("flight_recorder.unknown_stage stage=%s", event.stage)
        self.events.append(event)

    @contextmanager
    def stage(self, stage: str, **metadata: Any) -> Iterator[None]:
        """Time the enclosed block. An exception marks the stage failed and propagates."""
        began = time.perf_counter()
        failed = False
        try:
            yield
        except BaseException as exc:
            failed = True
            metadata = {**metadata, "error": type(exc).__name__}
            raise
        finally:
            elapsed = round((time.perf_counter() - began) * 1000, 2)
            masked = _mask(metadata)
            self._append(
                StageEvent(
                    stage=stage,
                    message=f"{stage} {'failed' if failed else 'completed'}",
                    elapsed_ms=elapsed,
                    metadata={"total_ms": self._since_start(), **masked},
                    failed=failed,
                )
            )
            logger.debug(
                "flight_recorder.stage session=%s stage=%s elapsed_ms=%.2f failed=%s metadata=%s",
                self.session_id,
                stage,
                elapsed,
                failed,
                masked,
            )

    def log(self, stage: str, message: str, **metadata: Any) -> None:
        masked = _mask(metadata)
        self._append(
            StageEvent(stage=stage, message=message, elapsed_ms=0, metadata={"total_ms": self._since_start(), **masked})
        )
        logger.debug(
            "flight_recorder.event session=%s stage=%s message=%s metadata=%s",
            self.session_id,
            stage,
            message,
            masked,
        )

    def messages(self, stage: str) -> List[str]:
        return [event.message for event in self.events if event.stage == stage]

    def summary(self) -> Dict[str, float]:
        """Milliseconds spent per timed stage, in first-seen order."""
        totals: Dict[str, float] = {}
        for event in self.events:
            if event.elapsed_ms:
                totals[event.stage] = round(totals.get(event.stage, 0.0) + event.elapsed_ms, 2)
        return totals


def _mask(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {key: "***" if key in _MASKED_KEYS and value else value for key, value in payload.items()}


class FlightRecorderMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        recorder = FlightRecorder()
        request.state.flight_recorder = recorder
        with recorder.stage("HTTP", method=request.method, path=request.url.path):
            response = await call_next(request)
        logger.info(
            "http.request method=%s path=%s status=%s elapsed_ms=%s",
            request.method,
            request.url.path,
            response.status_code,
            recorder.summary().get("HTTP"),
        )
        return response


def register_log_middleware(app: FastAPI) -> None:
    app.add_middleware(FlightRecorderMiddleware)
