from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Iterable, Iterator, Optional, Protocol

import requests
from openai import OpenAI, OpenAIError
from requests import RequestException

from .config import Settings
from .errors import LLMClientError
from .streaming import decode_stream

logger = logging.getLogger(__name__)

GROQ_CHAT_ENDPOINT = "https://api.groq.com/openai/v1/chat/completions"


class LLMClient(Protocol):
    model: str

    def complete(self, prompt: str) -> str:
        ...

    def stream(self, prompt: str) -> Iterator[str]:
        ...


def iter_sse_data(chunks: Iterable[bytes]) -> Iterator[str]:
    """Yield the payload of each ``data:`` line of a server-sent event stream."""
    pending = ""
    for text in decode_stream(chunks):
        pending += text
        *lines, pending = pending.split("\n")
        for line in lines:
            line = line.strip()
            if line.startswith("data:"):
                yield line[len("data:"):].strip()
    if pending.strip().startswith("data:"):
        yield pending.strip()[len("data:"):].strip()


def _status_of(response: Optional[requests.Response]) -> Optional[int]:
    return response.status_code if response is not None else None


class GroqChatClient:
    """Groq's OpenAI-compatible chat completions endpoint over plain HTTP."""

    def __init__(self, api_key: Optional[str], model: str, temperature: float, timeout: int = 60) -> None:
        if not api_key:
            raise LLMClientError("GROQ_API_KEY is not configured.", status_code=500)
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.timeout = timeout

    def _post(self, prompt: str, *, stream: bool) -> requests.Response:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "stream": stream,
        }
        try:
            response = requests.post(
                GROQ_CHAT_ENDPOINT,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self.timeout,
                stream=stream,
            )
            response.raise_for_status()
        except RequestException as exc:
            raise LLMClientError(
                f"Groq request failed: {exc}",
                status_code=_status_of(getattr(exc, "response", None)),
            ) from exc
        return response

    def complete(self, prompt: str) -> str:
        data = self._post(prompt, stream=False).json()
        if "error" in data:
            raise LLMClientError(f"Groq returned an error: {json.dumps(data['error'])}")

        choices = data.get("choices") or []
        if not choices:
            raise LLMClientError("Groq response did not contain any choices.")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not content:
            raise LLMClientError("Groq response did not contain message content.")
        return content.strip()

    def stream(self, prompt: str) -> Iterator[str]:
        response = self._post(prompt, stream=True)
        return self._iter_tokens(response)

    def _iter_tokens(self, response: requests.Response) -> Iterator[str]:
        try:
            for data in iter_sse_data(response.iter_content(chunk_size=None)):
                if data == "[DONE]":
                    break
                if not data:
                    continue
                try:
                    event = json.loads(data)
                except json.JSONDecodeError as exc:
                    raise LLMClientError(f"Groq stream sent a malformed event: {data[:200]!r}") from exc
                if "error" in event:
                    raise LLMClientError(f"Groq stream error: {json.dumps(event['error'])}")
                for choice in event.get("choices") or []:
                    delta = (choice.get("delta") or {}).get("content")
                    if delta:
                        yield delta
        finally:
            response.close()


class OpenAIChatClient:
    def __init__(self, api_key: Optional[str], model: str, temperature: float) -> None:
        if not api_key:
            raise LLMClientError("OPENAI_API_KEY is not configured.", status_code=500)
        self.model = model
        self.temperature = temperature
        self._client = OpenAI(api_key=api_key)

    def _create(self, prompt: str, *, stream: bool):
        try:
            return self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                stream=stream,
            )
        except OpenAIError as exc:
            raise LLMClientError(
                f"OpenAI request failed: {exc}",
                status_code=getattr(exc, "status_code", None),
            ) from exc

    def complete(self, prompt: str) -> str:
        response = self._create(prompt, stream=False)
        choices = getattr(response, "choices", None) or []
        if not choices or not choices[0].message.content:
            raise LLMClientError("OpenAI response did not contain any text output.")
        return choices[0].message.content.strip()

    def stream(self, prompt: str) -> Iterator[str]:
        return self._iter_tokens(self._create(prompt, stream=True))

    def _iter_tokens(self, events) -> Iterator[str]:
        try:
            for event in events:
                for choice in event.choices or []:
                    delta = getattr(choice.delta, "content", None)
                    if delta:
                        yield delta
        except OpenAIError as exc:
            raise LLMClientError(f"OpenAI stream failed: {exc}") from exc
        finally:
            close = getattr(events, "close", None)
            if close is not None:
                close()


@lru_cache(maxsize=2)
def get_llm_client(settings: Settings) -> LLMClient:
    provider = (settings.llm_provider or "groq").lower()
    if provider == "groq":
        return GroqChatClient(settings.groq_api_key, settings.groq_model, settings.llm_temperature)
    if provider == "openai":
        return OpenAIChatClient(settings.openai_api_key, settings.openai_model, settings.llm_temperature)
    raise LLMClientError(
        f"Unsupported LLM provider '{settings.llm_provider}'. "
        "Supported providers: groq, openai.",
        status_code=500,
    )
