from __future__ import annotations

import json
import os
from typing import Any, AsyncIterator, Dict, List, Optional

import logging
from openai import AsyncOpenAI, OpenAIError

from appointment_agent.errors import GenerationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}: {raw!r} (expected an integer)") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}: {raw!r} (expected a number)") from exc


class LanguageModel:
    """Chat-completions wrapper used for replies (plain and streamed) and slot extraction.

    Without an API key the client is left unset and ``available`` is False; callers
    are expected to fall back to their deterministic paths instead of calling in.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        extraction_model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.base_url = base_url or os.getenv("OPENAI_BASE_URL") or None
        self.model = model or os.getenv("OPENAI_MODEL", DEFAULT_MODEL)
        self.extraction_model = extraction_model or os.getenv("OPENAI_EXTRACTION_MODEL", self.model)
        self.max_tokens = max_tokens if max_tokens is not None else _env_int("LLM_MAX_TOKENS", 200)
        self.temperature = temperature if temperature is not None else _env_float("LLM_TEMPERATURE", 0.7)
        self._client: Optional[AsyncOpenAI] = client
        if self._client is None and self.api_key:
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)

    @property
    def available(self) -> bool:
        return self._client is not None

    def _require_client(self) -> AsyncOpenAI:
        if self._client is None:
            raise GenerationError("language model is not configured (OPENAI_API_KEY unset)")
        return self._client

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        client = self._require_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except OpenAIError as exc:
            logger.warning("llm.complete_error %s", exc)
            raise GenerationError(f"completion failed: {exc}") from exc
        if not response.choices:
            raise GenerationError("completion returned no choices")
        return response.choices[0].message.content or "I'm here to help!"

    async def stream(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        """Yield text deltas as they arrive. Errors at any point surface as GenerationError."""
        client = self._require_client()
        try:
            stream = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                token = chunk.choices[0].delta.content or ""
                if token:
                    yield token
        except OpenAIError as exc:
            logger.warning("llm.stream_error %s", exc)
            raise GenerationError(f"stream failed: {exc}") from exc

    async def complete_json(self, messages: List[Dict[str, str]], schema: Dict[str, Any]) -> Dict[str, Any]:
        client = self._require_client()
        try:
            response = await client.chat.completions.create(
                model=self.extraction_model,
                messages=messages,
                temperature=0,
                response_format={"type": "json_schema", "json_schema": schema},
            )
        except OpenAIError as exc:
            logger.warning("llm.json_error %s", exc)
            raise GenerationError(f"structured completion failed: {exc}") from exc

        if not response.choices:
            raise GenerationError("structured completion returned no choices")
        content = response.choices[0].message.content or ""
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            raise GenerationError(f"structured completion was not JSON: {content[:200]!r}") from exc
        if not isinstance(parsed, dict):
            raise GenerationError(f"structured completion was not an object: {type(parsed).__name__}")
        return parsed
