from __future__ import annotations

import logging
from functools import lru_cache
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask

from .config import Settings, get_settings
from .embeddings import get_embeddings
from .llm_client import get_llm_client
from .notifier import Notifier
from .pipeline import ChatPipeline
from .prompts import ChatMessage
from .rate_limiter import RateLimiter
from .retriever import SupabaseRetriever
from .streaming import AnswerBuffer, relay
from .supabase_client import get_supabase_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])

MAX_QUESTION_CHARS = 8000

_rate_limiter: RateLimiter | None = None


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = []


class ChatResponse(BaseModel):
    message: str


@lru_cache(maxsize=1)
def get_pipeline() -> ChatPipeline:
    settings = get_settings()
    retriever = SupabaseRetriever(
        get_supabase_client(),
        get_embeddings(settings),
        table_name=settings.vector_table,
        query_name=settings.vector_query_name,
        default_k=settings.retrieval_k,
    )
    notifier = Notifier(settings) if settings.escalation_enabled else None
    return ChatPipeline(settings, retriever, get_llm_client(settings), notifier)


def _check_rate_limit(request: Request, settings: Settings) -> None:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(
            limit=settings.chat_rate_limit_per_minute,
            window_seconds=60,
        )

    requester_ip = request.client.host if request.client else "unknown"
    if not _rate_limiter.allow(requester_ip):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many messages from this device. Please wait a minute and try again.",
            headers={"Retry-After": str(_rate_limiter.retry_after(requester_ip))},
        )


def _validate_messages(messages: List[ChatMessage]) -> None:
    if not messages:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="messages must not be empty.")
    last = messages[-1]
    if last.role != "user":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The last message must come from the user.",
        )
    if not last.content.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message cannot be empty.")
    if len(last.content) > MAX_QUESTION_CHARS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Message must be at most {MAX_QUESTION_CHARS} characters.",
        )


def _escalate_after_stream(pipeline: ChatPipeline, messages: List[ChatMessage], buffer: AnswerBuffer) -> None:
    if not buffer.completed:
        logger.info("Stream did not complete; skipping escalation check")
        return
    pipeline.escalate(messages, buffer.text)


@router.post("", response_model=ChatResponse)
def chat(
    payload: ChatRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
    pipeline: ChatPipeline = Depends(get_pipeline),
):
    _check_rate_limit(request, settings)
    messages = payload.messages
    _validate_messages(messages)

    # Upstream failures propagate to the ChatPipelineError handler in main.
    turn = pipeline.prepare(messages)

    if settings.streaming:
        tokens = pipeline.open_stream(turn)
        buffer = AnswerBuffer()
        logger.info("API: Streaming response...")
        return StreamingResponse(
            relay(tokens, buffer),
            media_type="text/plain; charset=utf-8",
            headers={"X-Accel-Buffering": "no"},
            background=BackgroundTask(_escalate_after_stream, pipeline, messages, buffer),
        )

    answer = pipeline.answer(turn)
    background_tasks.add_task(pipeline.escalate, messages, answer)
    return ChatResponse(message=answer)
