from __future__ import annotations

import json
import os
from typing import Dict, List, Sequence

from appointment_agent.models.booking import BookingDraft, ServiceType
from appointment_agent.models.chat import ConversationMessage

PROMPT_HISTORY_WINDOW = 8
EXTRACTION_CONTEXT_WINDOW = 6

DEFAULT_BUSINESS_NAME = "Dealey Media International"
DEFAULT_ASSISTANT_NAME = "Sammy"

APOLOGY_TEXT = "I'm having trouble right now. Please try again!"

_NEXT_QUESTIONS = {
    "name": "Happy to help you book a consultation! Could I get your full name?",
    "email": "Thanks! What's the best email address for your confirmation?",
    "service": (
        "Which service are you interested in: Social Media Marketing, SEO, Web Design, "
        "Content Creation, PPC Advertising, or Brand Strategy?"
    ),
    "date_time": "What day and time work best for you? For example, 'Monday at 2 PM' or 'tomorrow morning'.",
}


def business_name() -> str:
    return os.getenv("BUSINESS_NAME", DEFAULT_BUSINESS_NAME)


def assistant_name() -> str:
    return os.getenv("ASSISTANT_NAME", DEFAULT_ASSISTANT_NAME)


def build_system_prompt(draft: BookingDraft) -> str:
    services = "\n".join(f"- {service.value}" for service in ServiceType)
    captured = json.dumps({k: v for k, v in draft.to_dict().items() if v}, indent=2)
    return f"""You are {assistant_name()}, a friendly AI assistant for {business_name()}, a digital marketing agency.

IMPORTANT RULES:
- Keep responses SHORT (2-3 sentences max)
- Be warm, friendly, and professional
- You CAN book appointments!

SERVICES OFFERED:
{services}

BOOKING APPOINTMENTS:
When someone wants to book an appointment:
1. Ask for their NAME (if not provided)
2. Ask for their EMAIL (if not provided)
3. Ask what SERVICE they're interested in
4. Ask for preferred DATE and TIME
5. Confirm all details and say "Your appointment is booked!"

Current booking info for this customer:
{captured}

If all required info (name, email, service, date/time) is collected, confirm the booking!"""


def build_messages(
    draft: BookingDraft, history: Sequence[ConversationMessage], user_message: str
) -> List[Dict[str, str]]:
    """System prompt, the most recent stored turns, then the current user message."""
    recent = list(history)[-PROMPT_HISTORY_WINDOW:]
    return [
        {"role": "system", "content": build_system_prompt(draft)},
        *(message.as_prompt() for message in recent),
        {"role": "user", "content": user_message},
    ]


def build_extraction_messages(
    utterance: str, context: Sequence[ConversationMessage], draft: BookingDraft
) -> List[Dict[str, str]]:
    history_text = "\n".join(
        f"{message.role.value}: {message.content}" for message in list(context)[-EXTRACTION_CONTEXT_WINDOW:]
    )
    catalog = ", ".join(service.value for service in ServiceType)
    context_text = (
        "You extract appointment booking fields for a marketing agency assistant.\n"
        "Conversation history (newest last):\n"
        f"{history_text or '(none)'}\n\n"
        "Current captured booking (JSON):\n"
        f"{json.dumps({k: v for k, v in draft.to_dict().items() if v})}\n\n"
        "Return a JSON object with exactly the keys name, email, phone, service, date, time. "
        "Use null for anything the latest customer message does not state. "
        f"service must be one of: {catalog}. "
        "date is a weekday name, 'Tomorrow', or an ISO date. "
        "time is a clock time like '2 PM' or one of Morning, Afternoon, Evening."
    )
    return [
        {"role": "system", "content": "Extract booking fields from the latest customer message."},
        {"role": "assistant", "content": context_text},
        {"role": "user", "content": utterance},
    ]


def next_question(draft: BookingDraft) -> str:
    """Deterministic prompt for the first missing field; used when no language model is configured."""
    missing = draft.missing_fields()
    if not missing:
        return "Great, I have everything I need to book your appointment."
    greeting = f"Thanks, {draft.name.split()[0]}! " if draft.name and missing[0] != "name" else ""
    question = _NEXT_QUESTIONS[missing[0]]
    if greeting and question.startswith("Thanks! "):
        question = question[len("Thanks! "):]
    return greeting + question

