from __future__ import annotations

import logging
import threading
from functools import lru_cache
from pathlib import Path
from typing import List, Protocol, Sequence

import numpy as np
from openai import OpenAI, OpenAIError

from .config import Settings
from .errors import EmbeddingError

logger = logging.getLogger(__name__)


class EmbeddingAdapter(Protocol):
    dimension: int

    def embed_query(self, text: str) -> List[float]:
        ...

    def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        ...


def _as_vectors(raw_vectors, dimension: int) -> List[List[float]]:
    vectors: List[List[float]] = []
    for raw in raw_vectors:
        vector = np.asarray(raw, dtype=float).ravel()
        if vector.shape[0] != dimension:
            raise EmbeddingError(
                f"Embedding has {vector.shape[0]} dimensions, expected {dimension}."
            )
        vectors.append(vector.tolist())
    return vectors


class LocalEmbeddings:
    """fastembed model running in-process; weights are cached on disk."""

    def __init__(self, model_name: str, cache_dir: str, dimension: int) -> None:
        self.model_name = model_name
        self.cache_dir = cache_dir
        self.dimension = dimension
        self._model = None
        self._load_lock = threading.Lock()

    def _get_model(self):
        if self._model is not None:
            return self._model
        with self._load_lock:
            if self._model is not None:
                return self._model
            from fastembed import TextEmbedding

            Path(self.cache_dir).mkdir(parents=True, exist_ok=True)
            logger.info("Loading embedding model %s into %s", self.model_name, self.cache_dir)
            try:
                self._model = TextEmbedding(model_name=self.model_name, cache_dir=self.cache_dir)
            except Exception as exc:
                raise EmbeddingError(f"Could not load embedding model {self.model_name}: {exc}") from exc
        return self._model

    def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        model = self._get_model()
        try:
            raw = list(model.embed(list(texts)))
        except Exception as exc:
            raise EmbeddingError(f"Local embedding failed: {exc}") from exc
        return _as_vectors(raw, self.dimension)

    def embed_query(self, text: str) -> List[float]:
        logger.info("Embedding query (%d chars) first 120: %s", len(text), text[:120])
        vectors = self.embed_documents([text])
        return vectors[0]


class OpenAIEmbeddings:
    def __init__(self, api_key: str | None, model_name: str, dimension: int) -> None:
        if not api_key:
            raise EmbeddingError("OpenAI API key is not configured. Set OPENAI_API_KEY in the environment.")
        self.model_name = model_name
        self.dimension = dimension
        self._client = OpenAI(api_key=api_key)

    def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        for idx, txt in enumerate(texts):
            logger.debug(
                "Embedding batch item %d (%d chars) first 120: %s",
                idx + 1,
                len(txt),
                txt[:120],
            )
        try:
            response = self._client.embeddings.create(
                model=self.model_name,
                input=list(texts),
                dimensions=self.dimension,
            )
        except OpenAIError as exc:
            status_code = getattr(exc, "status_code", None)
            raise EmbeddingError(f"OpenAI embedding request failed: {exc}", status_code=status_code) from exc
        return _as_vectors((item.embedding for item in response.data), self.dimension)

    def embed_query(self, text: str) -> List[float]:
        logger.info("Embedding query (%d chars) first 120: %s", len(text), text[:120])
        vectors = self.embed_documents([text])
        return vectors[0]


@lru_cache(maxsize=2)
def get_embeddings(settings: Settings) -> EmbeddingAdapter:
    provider = settings.embedding_provider
    if provider == "local":
        return LocalEmbeddings(
            model_name=settings.embedding_model,
            cache_dir=settings.embedding_cache_dir,
            dimension=settings.embedding_dimension,
        )
    if provider == "openai":
        return OpenAIEmbeddings(
            api_key=settings.openai_api_key,
            model_name=settings.openai_embedding_model,
            dimension=settings.embedding_dimension,
        )
    raise EmbeddingError(
        f"Unsupported embedding provider '{settings.embedding_provider}'. "
        "Supported providers: local, openai."
    )
