from __future__ import annotations

from typing import Optional


class ChatPipelineError(RuntimeError):
    """Base class for failures while turning a chat turn into an answer."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class EmbeddingError(ChatPipelineError):
    """Raised when the embedding provider fails or returns unusable vectors."""


class RetrievalError(ChatPipelineError):
    """Raised when the vector store cannot be queried."""


class LLMClientError(ChatPipelineError):
    """Raised when the configured LLM provider cannot fulfil a request."""

    status_code = 502
