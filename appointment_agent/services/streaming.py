"""Single-turn token relay.

``StreamingCoordinator.events()`` is an async generator: it forwards every token from
the generation stream as soon as it arrives, and after the stream ends it awaits the
``finalize`` hook (completion policy, booking commit) which may contribute more text.
Exactly one ``complete`` event always closes the sequence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import logging

from appointment_agent.logging.flight_recorder import FlightRecorder
from appointment_agent.models.chat import ActionTaken, StreamEvent
from appointment_agent.services.prompts import APOLOGY_TEXT

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    DONE = "done"
    ERROR = "error"


@dataclass
class Completion:
    """What the finalize hook adds once generation has finished."""

    appended: str = ""
    actions: List[ActionTaken] = field(default_factory=list)
    booking: Optional[Dict[str, Any]] = None


FinalizeHook = Callable[[str], Awaitable[Completion]]


class StreamingCoordinator:
    def __init__(
        self,
        tokens: AsyncIterator[str],
        finalize: Optional[FinalizeHook] = None,
        recorder: Optional[FlightRecorder] = None,
        apology: str = APOLOGY_TEXT,
    ) -> None:
        self._tokens = tokens
        self._finalize = finalize
        self._recorder = recorder
        self._apology = apology
        self._parts: List[str] = []
        self.state = StreamState.IDLE
        self.error: Optional[BaseException] = None

    @property
    def text(self) -> str:
        return "".join(self._parts)

    async def events(self) -> AsyncIterator[StreamEvent]:
        if self.state is not StreamState.IDLE:
            raise RuntimeError(f"coordinator already used (state={self.state.value})")
        self.state = StreamState.GENERATING
        try:
            async for token in self._tokens:
                if not token:
                    continue
                self._parts.append(token)
                yield StreamEvent.token(token)
        except Exception as exc:  # noqa: BLE001
            self.state = StreamState.ERROR
            self.error = exc
            logger.warning("stream.generation_error tokens=%d err=%s", len(self._parts), exc)
            if self._recorder:
                self._recorder.log("GENERATE", "stream_error", tokens=len(self._parts), error=str(exc))
            yield StreamEvent.token(self._apology)
            yield StreamEvent.complete(self._apology, error=True)
            return

        self.state = StreamState.DONE
        if self._recorder:
            self._recorder.log("GENERATE", "stream_done", tokens=len(self._parts))

        completion = await self._finalize(self.text) if self._finalize else Completion()
        if completion.appended:
            self._parts.append(completion.appended)
            yield StreamEvent.token(completion.appended)
        yield StreamEvent.complete(self.text, actions=completion.actions, booking=completion.booking)
