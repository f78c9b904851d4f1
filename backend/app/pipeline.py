from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

from .config import Settings
from .context import assemble_context
from .escalation import EscalationDecision, EscalationState, detect_escalation
from .llm_client import LLMClient
from .notifier import Notifier
from .prompts import ChatMessage, compose_prompt, format_history
from .retriever import RetrievedDocument, SupabaseRetriever

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedTurn:
    messages: Sequence[ChatMessage]
    documents: List[RetrievedDocument]
    context_text: str
    history_text: str
    current_input: str
    prompt: str


class ChatPipeline:
    """Turns one chat turn into a grounded answer and escalates when asked to.

    Providers are injected once at startup and shared by every request.
    """

    def __init__(
        self,
        settings: Settings,
        retriever: SupabaseRetriever,
        llm: LLMClient,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.settings = settings
        self.retriever = retriever
        self.llm = llm
        self.notifier = notifier

    @property
    def escalation_enabled(self) -> bool:
        return self.settings.escalation_enabled and self.notifier is not None

    def prepare(self, messages: Sequence[ChatMessage]) -> PreparedTurn:
        current_input = messages[-1].content
        history_text = format_history(messages)

        documents = self.retriever.retrieve(current_input)
        context_text = assemble_context(documents)

        prompt = compose_prompt(
            context_text,
            history_text,
            current_input,
            company_name=self.settings.company_name,
            escalation=self.escalation_enabled,
        )
        logger.debug("Formatted prompt (%d chars):\n%s", len(prompt), prompt)
        return PreparedTurn(
            messages=messages,
            documents=documents,
            context_text=context_text,
            history_text=history_text,
            current_input=current_input,
            prompt=prompt,
        )

    def answer(self, turn: PreparedTurn) -> str:
        answer = self.llm.complete(turn.prompt)
        logger.info("Generated %d char answer with %s", len(answer), self.llm.model)
        return answer

    def open_stream(self, turn: PreparedTurn) -> Iterator[str]:
        logger.info("Streaming answer from %s", self.llm.model)
        return self.llm.stream(turn.prompt)

    def escalate(self, messages: Sequence[ChatMessage], answer: str) -> EscalationDecision:
        """Detect a hand-off and email the operator; delivery errors are only logged."""
        if not self.escalation_enabled:
            return EscalationDecision(EscalationState.NORMAL)

        decision = detect_escalation(messages, answer)
        if decision.event is None:
            return decision
        try:
            self.notifier.notify_escalation(decision.event)
        except Exception:
            logger.exception("Escalation email for %s could not be sent", decision.event.user_email)
        return decision
