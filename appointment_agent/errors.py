from __future__ import annotations

from typing import Optional


class AgentError(Exception):
    """Base class for failures scoped to a single conversation turn."""


class GenerationError(AgentError):
    """The language-generation call (or its token stream) failed."""


class ExtractionError(AgentError):
    """The structured extraction strategy produced no usable candidate set."""


class IntegrationError(AgentError):
    """An external collaborator (calendar, contacts, SMS, email) rejected or dropped a call."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            return f"{base} ({self.status_code}): {self.body or ''}".rstrip(": ")
        return base
