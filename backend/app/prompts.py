from __future__ import annotations

from typing import Iterable, Literal, Sequence

from pydantic import BaseModel


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


def refusal_phrase(company_name: str) -> str:
    return f"I am not sure, let me connect you with a {company_name} person"


def confirmation_phrase(company_name: str) -> str:
    return f"Thank you, I am sending your query to a {company_name} person"


PLAIN_TEMPLATE = """You are an AI assistant for {company}. Avoid referring to 'context' in your responses, instead use 'knowledge', but only when required.
Respond with bulleted points when listing response content.
Never make up answers, if unsure, say: '{refusal}'.
Only answer questions related to the context, if the question is out of scope, say: '{refusal}'.
Use the following context to answer the question:
{context}
Current conversation:
{chat_history}
User: {input}
AI:"""

ESCALATION_TEMPLATE = """You are an AI assistant for {company}. Avoid referring to 'context' in your responses, instead use 'knowledge', but only when required.
Respond with bulleted points when listing response content.
Never make up answers, if unsure, say: '{refusal}. Could you please share your email address so they can follow up?'.
Only answer questions related to the context, if the question is out of scope, say: '{refusal}. Could you please share your email address so they can follow up?'.
If the user replies with an email address after you asked for it, say exactly: '{confirmation}'.
Use the following context to answer the question:
{context}
Current conversation:
{chat_history}
User: {input}
AI:"""


def format_message(message: ChatMessage) -> str:
    return f"{message.role}: {message.content}"


def format_transcript(messages: Iterable[ChatMessage]) -> str:
    return "\n".join(format_message(message) for message in messages)


def format_history(messages: Sequence[ChatMessage]) -> str:
    """Render every turn except the newest one, oldest first."""
    return format_transcript(messages[:-1])


def compose_prompt(
    context: str,
    history: str,
    user_input: str,
    *,
    company_name: str,
    escalation: bool = False,
) -> str:
    template = ESCALATION_TEMPLATE if escalation else PLAIN_TEMPLATE
    return template.format(
        company=company_name,
        refusal=refusal_phrase(company_name),
        confirmation=confirmation_phrase(company_name),
        context=context,
        chat_history=history,
        input=user_input,
    )
