"""One conversation turn, end to end.

extract + merge (saved) -> generate -> completion policy -> commit (if complete) ->
reply augmentation -> history append. Turns for the same session are serialised by the
store's per-session lock; different sessions interleave freely.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Dict, List, Optional, Tuple

import logging

from appointment_agent.errors import GenerationError
from appointment_agent.logging.flight_recorder import FlightRecorder
from appointment_agent.models.booking import BookingDraft, BookingOutcome
from appointment_agent.models.chat import ActionTaken, ChatRequest, Role, StreamEvent, TurnResult
from appointment_agent.services.booking_pipeline import BookingPipeline, build_pipeline
from appointment_agent.services.completion import amend_reply, is_complete
from appointment_agent.services.llm import LanguageModel
from appointment_agent.services.notifications import NotificationFanout
from appointment_agent.services.prompts import APOLOGY_TEXT, build_messages, next_question
from appointment_agent.services.session_store import SessionStore, build_session_store
from appointment_agent.services.slot_extractor import SlotExtractor
from appointment_agent.services.streaming import Completion, StreamingCoordinator

logger = logging.getLogger(__name__)

BOOKING_TOOL = "book_appointment"


class AgentOrchestrator:
    def __init__(
        self,
        store: Optional[SessionStore] = None,
        model: Optional[LanguageModel] = None,
        extractor: Optional[SlotExtractor] = None,
        pipeline: Optional[BookingPipeline] = None,
        notifier: Optional[NotificationFanout] = None,
    ) -> None:
        self.store = store or build_session_store()
        self.model = model or LanguageModel()
        self.extractor = extractor or SlotExtractor(self.model)
        self.pipeline = pipeline or build_pipeline()
        self.notifier = notifier or NotificationFanout()

    async def process_message(self, request: ChatRequest) -> TurnResult:
        recorder = FlightRecorder(request.session_id)
        async with self.store.lock(request.session_id):
            draft, messages = await self._prepare(request, recorder)
            try:
                with recorder.stage("GENERATE", streamed=False):
                    text = await self._complete(messages, draft)
            except GenerationError as exc:
                logger.warning("turn.generation_failed session=%s err=%s", request.session_id, exc)
                return TurnResult(text=APOLOGY_TEXT)

            final_text, outcome = await self._finish(request, draft, text, streamed=False, recorder=recorder)
            await self._record_history(request, final_text)
            logger.info("turn.done session=%s streamed=False stages=%s", request.session_id, recorder.summary())
            return TurnResult(text=final_text, actions=_actions(outcome), booking=_booking(outcome))

    async def stream_message(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Token events then one completion event. Callers must drain it to the end."""
        recorder = FlightRecorder(request.session_id)
        async with self.store.lock(request.session_id):
            draft, messages = await self._prepare(request, recorder)

            async def finalize(text: str) -> Completion:
                final_text, outcome = await self._finish(request, draft, text, streamed=True, recorder=recorder)
                return Completion(
                    appended=final_text[len(text):],
                    actions=_actions(outcome),
                    booking=_booking(outcome),
                )

            coordinator = StreamingCoordinator(self._tokens(messages, draft), finalize, recorder)
            async for event in coordinator.events():
                if event.type == "complete" and not event.error:
                    await self._record_history(request, event.text)
                    logger.info("turn.done session=%s streamed=True stages=%s", request.session_id, recorder.summary())
                yield event

    async def _prepare(
        self, request: ChatRequest, recorder: FlightRecorder
    ) -> Tuple[BookingDraft, List[Dict[str, str]]]:
        session_id = request.session_id
        with recorder.stage("SESSION"):
            history = await self.store.get_history(session_id)
            draft = await self.store.get_draft(session_id)
        with recorder.stage("EXTRACT"):
            draft = await self.extractor.extract_and_merge(
                request.message, history, draft, locale=request.locale, recorder=recorder
            )
        await self.store.save_draft(session_id, draft)
        logger.info(
            "turn.draft session=%s missing=%s", session_id, draft.missing_fields()
        )
        return draft, build_messages(draft, history, request.message)

    async def _complete(self, messages: List[Dict[str, str]], draft: BookingDraft) -> str:
        if not self.model.available:
            return next_question(draft)
        return await self.model.complete(messages)

    async def _tokens(self, messages: List[Dict[str, str]], draft: BookingDraft) -> AsyncIterator[str]:
        if not self.model.available:
            yield next_question(draft)
            return
        async for token in self.model.stream(messages):
            yield token

    async def _finish(
        self,
        request: ChatRequest,
        draft: BookingDraft,
        text: str,
        *,
        streamed: bool,
        recorder: FlightRecorder,
    ) -> Tuple[str, Optional[BookingOutcome]]:
        with recorder.stage("POLICY"):
            complete = is_complete(draft)
        outcome: Optional[BookingOutcome] = None
        if complete:
            # Shielded so a dropped connection cannot abandon a booking mid-commit
            commit = asyncio.ensure_future(self._commit(request.session_id, draft, recorder))
            try:
                outcome = await asyncio.shield(commit)
            except asyncio.CancelledError:
                # The caller holds the session lock; keep it until the commit settles
                await asyncio.wait({commit})
                raise
        return amend_reply(text, draft, outcome, streamed=streamed), outcome

    async def _commit(self, session_id: str, draft: BookingDraft, recorder: FlightRecorder) -> BookingOutcome:
        logger.info("turn.commit session=%s", session_id)
        try:
            outcome = await self.pipeline.commit(draft, recorder)
        finally:
            # One attempt per completed draft, successful or not
            await self.store.clear_draft(session_id)
        if outcome.success:
            self.notifier.dispatch(draft, outcome, recorder)
        return outcome

    async def _record_history(self, request: ChatRequest, reply: str) -> None:
        await self.store.append_message(request.session_id, Role.USER, request.message, user_id=request.user_id)
        await self.store.append_message(request.session_id, Role.ASSISTANT, reply, user_id=request.user_id)


def _actions(outcome: Optional[BookingOutcome]) -> List[ActionTaken]:
    if outcome is None:
        return []
    return [ActionTaken(tool=BOOKING_TOOL, result=outcome.status.value, success=outcome.success)]


def _booking(outcome: Optional[BookingOutcome]) -> Optional[Dict]:
    if outcome is None:
        return None
    # Raw collaborator errors stay in the logs
    return outcome.model_dump(mode="json", exclude={"error"})


def build_orchestrator() -> AgentOrchestrator:
    return AgentOrchestrator()
