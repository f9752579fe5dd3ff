"""
In-memory document store.

Process-local implementation of the document store contract, used by the
test-suite and as a fake for callers that need the engine without a
database. The internal lock stands in for the database's commit atomicity:
validation and application of one transaction's writes never interleave with
another commit, while transaction bodies run fully concurrently.
"""

from __future__ import annotations

import copy
import threading
from typing import Any

from .base import (
    MISSING_VERSION,
    DocumentSnapshot,
    DocumentStore,
    Filter,
    Transaction,
    apply_write,
    matches_all,
)


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store: ``{collection: {doc_id: (version, data)}}``."""

    backend_name = 'memory'

    def __init__(self, **options: Any):
        super().__init__(**options)
        self._documents: dict[str, dict[str, tuple[int, dict[str, Any]]]] = {}
        self._lock = threading.RLock()

    def _fetch(self, collection: str, doc_id: str) -> DocumentSnapshot | None:
        with self._lock:
            entry = self._documents.get(collection, {}).get(doc_id)
            if entry is None:
                return None
            version, data = entry
            return DocumentSnapshot(collection, doc_id, copy.deepcopy(data), version)

    def _fetch_many(self, collection: str, filters: tuple[Filter, ...]) -> list[DocumentSnapshot]:
        with self._lock:
            return [
                DocumentSnapshot(collection, doc_id, copy.deepcopy(data), version)
                for doc_id, (version, data) in self._documents.get(collection, {}).items()
                if matches_all(data, filters)
            ]

    def _version(self, collection: str, doc_id: str) -> int:
        entry = self._documents.get(collection, {}).get(doc_id)
        return entry[0] if entry else MISSING_VERSION

    def _commit(self, tx: Transaction) -> None:
        with self._lock:
            self._validate(tx, self._version, self._fetch_many)
            for (collection, doc_id), write in tx.writes.items():
                documents = self._documents.setdefault(collection, {})
                current = documents.get(doc_id)
                data = apply_write(current[1] if current else None, write)
                if data is None:
                    documents.pop(doc_id, None)
                else:
                    version = current[0] + 1 if current else 1
                    documents[doc_id] = (version, data)

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._documents.get(collection, {}))

    def clear(self) -> None:
        with self._lock:
            self._documents.clear()
