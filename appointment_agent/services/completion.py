from __future__ import annotations

from typing import Optional

from appointment_agent.models.booking import BookingDraft, BookingOutcome, BookingStatus

CONFIRMATION_WORDS = ("booked", "confirmed")

COMPLETION_MARKERS = (
    "booked",
    "confirmed",
    "all set",
    "scheduled",
    "you're set",
    "you are set",
    "see you then",
)

INVITATION_MARKERS = (
    "anything else",
    "something else",
    "any other questions",
    "anything more",
    "else i can help",
)

FOLLOW_UP = "Is there anything else I can help you with?"

CONFLICT_TEXT = (
    "It looks like that time is already taken. "
    "Could you suggest another day or time that works for you?"
)
COMMIT_FAILED_TEXT = (
    "I'm sorry, I wasn't able to finish booking that appointment just now. "
    "Please try again in a moment or reach out to our team directly."
)


def is_complete(draft: BookingDraft) -> bool:
    """Ready to commit: name, email and service, plus a date or a time (either one is enough)."""
    return bool(draft.name and draft.email and draft.service and (draft.date or draft.time))


def has_confirmation(text: str) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in CONFIRMATION_WORDS)


def signals_completion(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in COMPLETION_MARKERS)


def invites_more(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in INVITATION_MARKERS)


def _when(draft: BookingDraft) -> str:
    return " ".join(part for part in (draft.date, draft.time) if part)


def confirmation_block(draft: BookingDraft) -> str:
    """Appended after a streamed reply that never confirmed the booking."""
    return (
        "\n\nAppointment Booked!\n"
        f"Name: {draft.name}\n"
        f"Email: {draft.email}\n"
        f"Service: {draft.service}\n"
        f"Date/Time: {_when(draft)}"
    )


def confirmation_message(draft: BookingDraft) -> str:
    """Replaces a non-streamed reply that never confirmed the booking."""
    return (
        "Perfect! I've booked your appointment:\n\n"
        f"Name: {draft.name}\n"
        f"Email: {draft.email}\n"
        f"Service: {draft.service}\n"
        f"Date/Time: {_when(draft)}\n\n"
        "You'll receive a confirmation email shortly. Is there anything else I can help with?"
    )


def failure_message(outcome: BookingOutcome) -> str:
    if outcome.status is BookingStatus.SLOT_UNAVAILABLE:
        return CONFLICT_TEXT
    return COMMIT_FAILED_TEXT


def amend_reply(
    text: str,
    draft: BookingDraft,
    outcome: Optional[BookingOutcome],
    *,
    streamed: bool,
) -> str:
    """Return the final reply text for a turn.

    Confirmation handling runs first, the follow-up prompt second, and both look at the
    fully assembled reply. When ``streamed`` is True every change is an append, so the
    caller can emit ``result[len(text):]`` after the tokens it already delivered.
    """
    result = text
    if outcome is not None:
        if outcome.success:
            if not has_confirmation(result):
                result = result + confirmation_block(draft) if streamed else confirmation_message(draft)
        else:
            notice = failure_message(outcome)
            # A reply that claimed success must not survive when nothing was streamed yet
            if not streamed and has_confirmation(result):
                return notice
            return f"{result}\n\n{notice}" if result else notice

    if signals_completion(result) and not invites_more(result):
        result = f"{result} {FOLLOW_UP}" if result else FOLLOW_UP
    return result
