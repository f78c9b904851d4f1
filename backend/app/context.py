from __future__ import annotations

import json
from typing import Any, Callable, Iterable, Mapping, Optional, Tuple

from .retriever import RetrievedDocument

FieldAccessor = Callable[[Mapping[str, Any]], Optional[str]]


def _field(name: str) -> FieldAccessor:
    def accessor(record: Mapping[str, Any]) -> Optional[str]:
        if name not in record or record[name] is None:
            return None
        return str(record[name])

    accessor.__name__ = f"field_{name}"
    return accessor


# Tried in order; the first accessor returning a value wins.
TEXT_ACCESSORS: Tuple[FieldAccessor, ...] = (
    _field("content"),
    _field("description"),
)


def serialize_record(record: Mapping[str, Any]) -> str:
    return json.dumps(dict(record), ensure_ascii=False, default=str)


def document_text(document: RetrievedDocument) -> str:
    for accessor in TEXT_ACCESSORS:
        text = accessor(document.record)
        if text is not None:
            return text
    return serialize_record(document.record)


def assemble_context(documents: Iterable[RetrievedDocument]) -> str:
    """Join the text of each retrieved document, one per line, in retrieval order."""
    return "\n".join(document_text(doc) for doc in documents)
