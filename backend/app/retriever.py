from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .embeddings import EmbeddingAdapter
from .errors import RetrievalError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievedDocument:
    record: Mapping[str, Any]
    similarity: Optional[float] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RetrievedDocument":
        similarity = row.get("similarity")
        metadata = row.get("metadata") or {}
        return cls(
            record=dict(row),
            similarity=float(similarity) if similarity is not None else None,
            metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        )


class SupabaseRetriever:
    """Similarity search through a Supabase ``match_*`` function."""

    def __init__(
        self,
        client,
        embeddings: EmbeddingAdapter,
        *,
        table_name: str = "documents",
        query_name: str = "match_documents",
        default_k: int = 4,
    ) -> None:
        self.client = client
        self.embeddings = embeddings
        self.table_name = table_name
        self.query_name = query_name
        self.default_k = default_k

    def retrieve(self, query: str, k: int | None = None) -> List[RetrievedDocument]:
        match_count = k or self.default_k
        query_embedding = self.embeddings.embed_query(query)

        params: Dict[str, Any] = {
            "query_embedding": list(query_embedding),
            "match_count": match_count,
            "filter": {},
        }
        try:
            response = self.client.rpc(self.query_name, params).execute()
        except Exception as exc:
            status_code = getattr(exc, "code", None)
            raise RetrievalError(
                f"Vector search on {self.table_name} failed: {exc}",
                status_code=status_code if isinstance(status_code, int) else None,
            ) from exc

        rows = response.data or []
        documents = [RetrievedDocument.from_row(row) for row in rows]
        logger.info(
            "Retrieved %d document(s) from %s via %s (k=%d)",
            len(documents),
            self.table_name,
            self.query_name,
            match_count,
        )
        return documents
