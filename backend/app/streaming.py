from __future__ import annotations

import codecs
import logging
from typing import Iterable, Iterator, List

logger = logging.getLogger(__name__)


class Utf8StreamDecoder:
    """Incremental UTF-8 decoder.

    A multi-byte character split across two chunks is held back until the
    remaining bytes arrive, so no replacement characters leak into the text.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")()

    def decode(self, chunk: bytes, final: bool = False) -> str:
        return self._decoder.decode(chunk, final)

    def flush(self) -> str:
        return self._decoder.decode(b"", True)


def decode_stream(chunks: Iterable[bytes]) -> Iterator[str]:
    decoder = Utf8StreamDecoder()
    for chunk in chunks:
        if not chunk:
            continue
        text = decoder.decode(chunk)
        if text:
            yield text
    tail = decoder.flush()
    if tail:
        yield tail


def iter_text_chunks(text: str, size: int = 64) -> Iterator[str]:
    for start in range(0, len(text), max(1, size)):
        yield text[start:start + size]


class AnswerBuffer:
    """Collects streamed text so the full answer is available once the stream ends."""

    def __init__(self) -> None:
        self._parts: List[str] = []
        self.completed = False

    def append(self, text: str) -> None:
        self._parts.append(text)

    @property
    def text(self) -> str:
        return "".join(self._parts)


def relay(tokens: Iterable[str], buffer: AnswerBuffer) -> Iterator[bytes]:
    """Encode tokens for the HTTP body as they arrive."""
    iterator = iter(tokens)
    try:
        for token in iterator:
            if not token:
                continue
            buffer.append(token)
            yield token.encode("utf-8")
        buffer.completed = True
    except GeneratorExit:
        logger.info("Client disconnected after %d chars; stopping stream", len(buffer.text))
        raise
    except Exception:
        logger.exception("Upstream stream failed after %d chars", len(buffer.text))
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()
