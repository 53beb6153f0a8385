"""Turn-by-turn slot extraction and the merge policy that folds candidates into the draft.

Two strategies produce an ``ExtractionResult`` for the latest utterance: a structured
one backed by the language model's JSON mode, and a deterministic, locale-aware pattern
matcher. The structured strategy is tried first; any failure falls back to the
deterministic one so a turn never leaves the draft untouched because of an LLM hiccup.
"""

from __future__ import annotations

import dataclasses
import os
import re
from typing import List, Optional, Sequence, Tuple

import logging
from pydantic import ValidationError

from appointment_agent.errors import ExtractionError, GenerationError
from appointment_agent.logging.flight_recorder import FlightRecorder
from appointment_agent.models.booking import BookingDraft, ExtractionResult, ServiceType
from appointment_agent.models.chat import ConversationMessage
from appointment_agent.services.llm import LanguageModel
from appointment_agent.services.locales import DEFAULT_LOCALE, LocaleRules, get_locale_rules
from appointment_agent.services.prompts import build_extraction_messages

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}")

# Catalog order; the first service with a matching keyword wins.
SERVICE_KEYWORDS: Tuple[Tuple[ServiceType, Tuple[str, ...]], ...] = (
    (ServiceType.SOCIAL_MEDIA, ("social media",)),
    (ServiceType.SEO, ("seo", "search engine optimization")),
    (ServiceType.WEB_DESIGN, ("web design", "website")),
    (ServiceType.CONTENT, ("content",)),
    (ServiceType.PPC, ("ppc", "ads", "advertising")),
    (ServiceType.BRAND, ("brand", "branding")),
)

DATE_KEYWORDS: Tuple[Tuple[str, str], ...] = (
    ("tomorrow", "Tomorrow"),
    ("monday", "Monday"),
    ("tuesday", "Tuesday"),
    ("wednesday", "Wednesday"),
    ("thursday", "Thursday"),
    ("friday", "Friday"),
    ("saturday", "Saturday"),
    ("sunday", "Sunday"),
)

DAYPARTS: Tuple[Tuple[str, str], ...] = (
    ("morning", "Morning (9-12)"),
    ("afternoon", "Afternoon (12-5)"),
    ("evening", "Evening (5-7)"),
)

_ISO_DATE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")

# Tried in this order; the first format that matches decides the time.
_COLON_MERIDIEM = re.compile(r"\b(\d{1,2}):([0-5]\d)\s*(am|pm)\b", re.I)
_BARE_MERIDIEM = re.compile(r"\b(\d{1,2})\s*(am|pm)\b", re.I)
_DOTTED_MERIDIEM = re.compile(r"\b(\d{1,2})(?::([0-5]\d))?\s*([ap])\.\s?m\.?", re.I)

_NAME_STOPWORDS = {
    "and", "at", "from", "here", "my", "with", "looking", "interested", "calling",
    "trying", "booking", "available", "free", "good", "fine", "great", "ready",
    "back", "on", "for", "today", "tonight", "next", "this", "ko",
}
# Scheduling and catalog vocabulary is never part of a name
_NAME_STOPWORDS.update(keyword for keyword, _ in DATE_KEYWORDS + DAYPARTS)
_NAME_STOPWORDS.update(
    word for _, keywords in SERVICE_KEYWORDS for keyword in keywords for word in keyword.split()
)

_EMAIL_CORRECTIONS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"@g\s*mial\.", re.I), "@gmail."),
    (re.compile(r"@gamil\.", re.I), "@gmail."),
    (re.compile(r"@gmal\.", re.I), "@gmail."),
    (re.compile(r"@hotmial\.", re.I), "@hotmail."),
    (re.compile(r"@yahooo\.", re.I), "@yahoo."),
    (re.compile(r"\.con$", re.I), ".com"),
    (re.compile(r"\.comm$", re.I), ".com"),
    (re.compile(r"\.cmo$", re.I), ".com"),
)


def correct_email(value: str) -> str:
    """Undo common transcription artifacts. Applying it twice changes nothing."""
    email = re.sub(r"\s+", "", value).strip(".,;:!?\"'<>()[]").lower()
    for pattern, replacement in _EMAIL_CORRECTIONS:
        email = pattern.sub(replacement, email)
    return email


def merge_draft(draft: BookingDraft, candidate: ExtractionResult) -> BookingDraft:
    """Fold a candidate set into a draft: fresh non-empty values win, nulls never clear."""
    updates = {}
    for name, value in candidate.model_dump().items():
        if value is None:
            continue
        value = str(value).strip()
        if not value:
            continue
        if name == "email":
            value = correct_email(value)
        updates[name] = value
    return dataclasses.replace(draft, **updates) if updates else draft


def match_service(text: str) -> Optional[ServiceType]:
    lowered = text.lower()
    for service, keywords in SERVICE_KEYWORDS:
        for keyword in keywords:
            if re.search(rf"\b{re.escape(keyword)}\b", lowered):
                return service
    return None


def normalize_service(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    service = ServiceType.lookup(value) or match_service(value)
    return service.value if service else None


def _clean_name(raw: str) -> Optional[str]:
    words: List[str] = []
    for word in raw.split():
        if word.lower() in _NAME_STOPWORDS:
            break
        words.append(word)
    if not words:
        return None
    name = " ".join(words)
    if name.islower() or name.isupper():
        name = name.title()
    return name


def _format_clock(hour: str, minutes: Optional[str], meridiem: str) -> Optional[str]:
    hour_value = int(hour)
    if not 1 <= hour_value <= 12:
        return None
    suffix = "AM" if meridiem.lower().startswith("a") else "PM"
    if minutes and minutes != "00":
        return f"{hour_value}:{minutes} {suffix}"
    return f"{hour_value} {suffix}"


def _normalize_phone(raw: str, rules: LocaleRules) -> Optional[str]:
    for phone_format in rules.phone_formats:
        normalized = phone_format.normalize(raw)
        if normalized:
            return normalized
    return None


class DeterministicStrategy:
    """Locale-aware regex extraction. Never raises; unmatched fields stay None."""

    def extract(self, utterance: str, rules: LocaleRules) -> ExtractionResult:
        return ExtractionResult(
            name=self.extract_name(utterance, rules),
            email=self.extract_email(utterance, rules),
            phone=self.extract_phone(utterance, rules),
            service=self.extract_service(utterance),
            date=self.extract_date(utterance),
            time=self.extract_time(utterance),
        )

    def extract_email(self, utterance: str, rules: LocaleRules) -> Optional[str]:
        match = EMAIL_PATTERN.search(utterance)
        if match:
            return match.group(0)
        spoken = utterance
        for pattern, replacement in rules.spoken_email:
            spoken = pattern.sub(replacement, spoken)
        match = EMAIL_PATTERN.search(spoken)
        return match.group(0) if match else None

    def extract_name(self, utterance: str, rules: LocaleRules) -> Optional[str]:
        # Emails contain letter runs that look like names to the casual patterns
        text = EMAIL_PATTERN.sub(" ", utterance)
        for pattern in rules.name_patterns:
            match = pattern.search(text)
            if not match:
                continue
            name = _clean_name(match.group(1))
            if name:
                return name
        return None

    def extract_phone(self, utterance: str, rules: LocaleRules) -> Optional[str]:
        for phone_format in rules.phone_formats:
            for match in phone_format.pattern.finditer(utterance):
                normalized = phone_format.normalize(match.group(0))
                if normalized:
                    return normalized
        return None

    def extract_service(self, utterance: str) -> Optional[str]:
        service = match_service(utterance)
        return service.value if service else None

    def extract_date(self, utterance: str) -> Optional[str]:
        lowered = utterance.lower()
        for keyword, label in DATE_KEYWORDS:
            if re.search(rf"\b{keyword}\b", lowered):
                return label
        match = _ISO_DATE.search(utterance)
        return match.group(1) if match else None

    def extract_time(self, utterance: str) -> Optional[str]:
        parsed: Optional[str] = None
        match = _COLON_MERIDIEM.search(utterance)
        if match:
            parsed = _format_clock(match.group(1), match.group(2), match.group(3))
        if parsed is None:
            match = _BARE_MERIDIEM.search(utterance)
            if match:
                parsed = _format_clock(match.group(1), None, match.group(2))
        if parsed is None:
            match = _DOTTED_MERIDIEM.search(utterance)
            if match:
                parsed = _format_clock(match.group(1), match.group(2), match.group(3))

        lowered = utterance.lower()
        for keyword, label in DAYPARTS:
            if re.search(rf"\b{keyword}\b", lowered):
                return label
        return parsed


class StructuredStrategy:
    def __init__(self, model: LanguageModel) -> None:
        self.model = model

    async def extract(
        self,
        utterance: str,
        context: Sequence[ConversationMessage],
        draft: BookingDraft,
        rules: LocaleRules,
    ) -> ExtractionResult:
        if not self.model.available:
            raise ExtractionError("language model unavailable")
        messages = build_extraction_messages(utterance, context, draft)
        try:
            data = await self.model.complete_json(messages, ExtractionResult.json_schema_format())
        except GenerationError as exc:
            raise ExtractionError(str(exc)) from exc
        try:
            result = ExtractionResult.model_validate(data)
        except ValidationError as exc:
            raise ExtractionError(f"invalid extraction payload: {exc}") from exc

        phone = _normalize_phone(result.phone, rules) if result.phone else None
        email = result.email
        if email and not EMAIL_PATTERN.fullmatch(correct_email(email)):
            email = None
        return result.model_copy(
            update={"service": normalize_service(result.service), "phone": phone, "email": email}
        )


class SlotExtractor:
    def __init__(self, model: Optional[LanguageModel] = None, default_locale: Optional[str] = None) -> None:
        self.structured = StructuredStrategy(model) if model is not None else None
        self.deterministic = DeterministicStrategy()
        self.default_locale = default_locale or os.getenv("DEFAULT_LOCALE", DEFAULT_LOCALE)

    async def extract(
        self,
        utterance: str,
        context: Sequence[ConversationMessage],
        draft: BookingDraft,
        locale: Optional[str] = None,
        recorder: Optional[FlightRecorder] = None,
    ) -> ExtractionResult:
        rules = get_locale_rules(locale or self.default_locale)
        if self.structured is not None and self.structured.model.available:
            try:
                result = await self.structured.extract(utterance, context, draft, rules)
                self._trace(recorder, "structured", rules, result)
                return result
            except ExtractionError as exc:
                logger.info("extract.structured_failed err=%s; using deterministic patterns", exc)
                if recorder:
                    recorder.log("EXTRACT", "structured_failed", error=str(exc))
        result = self.deterministic.extract(utterance, rules)
        self._trace(recorder, "deterministic", rules, result)
        return result

    async def extract_and_merge(
        self,
        utterance: str,
        context: Sequence[ConversationMessage],
        draft: BookingDraft,
        locale: Optional[str] = None,
        recorder: Optional[FlightRecorder] = None,
    ) -> BookingDraft:
        candidate = await self.extract(utterance, context, draft, locale=locale, recorder=recorder)
        return merge_draft(draft, candidate)

    @staticmethod
    def _trace(
        recorder: Optional[FlightRecorder], strategy: str, rules: LocaleRules, result: ExtractionResult
    ) -> None:
        found = [name for name, value in result.model_dump().items() if value]
        logger.info("extract.done strategy=%s locale=%s fields=%s", strategy, rules.tag, found)
        if recorder:
            recorder.log("EXTRACT", strategy, locale=rules.tag, fields=found)
