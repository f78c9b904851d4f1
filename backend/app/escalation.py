from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from .prompts import ChatMessage, format_transcript

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

# Substrings of refusal_phrase() / confirmation_phrase(); independent of the company name.
REFUSAL_MARKER = "not sure, let me connect you with"
CONFIRMATION_MARKER = "sending your query"


class EscalationState(str, enum.Enum):
    NORMAL = "normal"
    AWAITING_EMAIL = "awaiting_email"
    ESCALATED = "escalated"


@dataclass(frozen=True)
class EscalationEvent:
    transcript: str
    user_email: str


@dataclass(frozen=True)
class EscalationDecision:
    state: EscalationState
    user_email: Optional[str] = None
    event: Optional[EscalationEvent] = None


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def extract_email(text: str) -> Optional[str]:
    match = EMAIL_REGEX.search(text or "")
    return match.group(0) if match else None


def latest_user_turn(messages: Sequence[ChatMessage]) -> Optional[ChatMessage]:
    for message in reversed(messages):
        if message.role == "user":
            return message
    return None


def detect_escalation(messages: Sequence[ChatMessage], answer: str) -> EscalationDecision:
    """Classify a finished answer.

    ``AWAITING_EMAIL`` means the assistant handed off and asked for contact
    details. ``ESCALATED`` requires both an email in the latest user turn and
    the confirmation phrase in the answer, and carries the one event to send.
    """
    normalized_answer = _normalize(answer)
    user_turn = latest_user_turn(messages)
    user_email = extract_email(user_turn.content) if user_turn else None

    if user_email and CONFIRMATION_MARKER in normalized_answer:
        transcript_lines = [format_transcript(messages), f"assistant: {answer}"]
        event = EscalationEvent(
            transcript="\n".join(line for line in transcript_lines if line),
            user_email=user_email,
        )
        logger.info("Escalation confirmed for %s", user_email)
        return EscalationDecision(EscalationState.ESCALATED, user_email=user_email, event=event)

    if REFUSAL_MARKER in normalized_answer:
        logger.info("Assistant could not answer; awaiting contact email")
        return EscalationDecision(EscalationState.AWAITING_EMAIL, user_email=user_email)

    return EscalationDecision(EscalationState.NORMAL)
