"""
Document store abstraction.

Defines the contract every backend implements:

- ``get`` / ``query`` for plain reads,
- ``add`` / ``update`` / ``delete`` as single-write transactions,
- ``transaction(body)`` running ``body(tx)`` with optimistic concurrency:
  reads are recorded with their document versions, writes are buffered, and
  the backend's commit re-validates every read (and every query result set)
  before applying the writes atomically. A stale read aborts the commit with
  ``WriteConflict`` and the body is re-run on a fresh ``Transaction`` with
  exponential backoff, up to ``max_attempts``; after that the caller gets a
  ``TransactionConflictError``.

Any other exception raised by the body aborts the attempt without writing
and propagates unchanged.
"""

from __future__ import annotations

import copy
import logging
import random
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, ClassVar, TypeVar

from common.config import TransactionConfig
from common.exceptions import TransactionConflictError

logger = logging.getLogger(__name__)

T = TypeVar('T')

MISSING_VERSION = 0

WRITE_SET = 'set'
WRITE_UPDATE = 'update'
WRITE_DELETE = 'delete'


class StoreError(Exception):
    """Base exception for document store misuse (not business failures)."""

    pass


class DocumentMissingError(StoreError):
    """Raised when updating or deleting a document that does not exist."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Document {collection}/{doc_id} does not exist")


class DocumentExistsError(StoreError):
    """Raised when adding a document under an id that is already taken."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Document {collection}/{doc_id} already exists")


class WriteConflict(StoreError):
    """A read or query went stale before commit. Triggers a retry."""

    pass


@dataclass(frozen=True)
class Filter:
    """Single query predicate on a top-level document field.

    Supported operators:
        '=='             field equals value
        'in'             field equals one of value (a list/tuple)
        'array_contains' field is a list containing value
    """

    field: str
    op: str
    value: Any

    OPERATORS: ClassVar[tuple[str, ...]] = ('==', 'in', 'array_contains')

    def __post_init__(self):
        if self.op not in self.OPERATORS:
            raise StoreError(f"Unsupported filter operator: {self.op}")

    @classmethod
    def coerce(cls, item: Filter | tuple) -> Filter:
        if isinstance(item, cls):
            return item
        field_name, op, value = item
        return cls(field_name, op, value)

    def matches(self, data: dict[str, Any]) -> bool:
        actual = data.get(self.field)
        if self.op == '==':
            return actual == self.value
        if self.op == 'in':
            return actual in self.value
        return isinstance(actual, list) and self.value in actual


def normalize_filters(filters: Iterable[Filter | tuple] | None) -> tuple[Filter, ...]:
    return tuple(Filter.coerce(item) for item in (filters or ()))


def matches_all(data: dict[str, Any], filters: tuple[Filter, ...]) -> bool:
    return all(f.matches(data) for f in filters)


@dataclass(frozen=True)
class DocumentSnapshot:
    """Immutable view of one stored document at a given version."""

    collection: str
    id: str
    data: dict[str, Any]
    version: int

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


@dataclass
class PendingWrite:
    """Buffered write inside a transaction."""

    kind: str
    data: dict[str, Any] | None = None


def apply_write(current: dict[str, Any] | None, write: PendingWrite) -> dict[str, Any] | None:
    """Resulting document data after applying ``write`` to ``current``."""
    if write.kind == WRITE_DELETE:
        return None
    if write.kind == WRITE_SET:
        return copy.deepcopy(write.data)
    merged = dict(current or {})
    merged.update(copy.deepcopy(write.data))
    return merged


class Transaction:
    """Transaction-scoped read/write handle passed to a transaction body.

    Reads are repeatable within the handle and reflect the handle's own
    buffered writes. Nothing is visible to other readers until commit.
    """

    def __init__(self, store: DocumentStore):
        self._store = store
        self._base: dict[tuple[str, str], DocumentSnapshot | None] = {}
        self.read_versions: dict[tuple[str, str], int] = {}
        self.query_results: list[tuple[str, tuple[Filter, ...], dict[str, int]]] = []
        self.writes: dict[tuple[str, str], PendingWrite] = {}

    # ------------------------------------------------------------------ reads

    def get(self, collection: str, doc_id: str) -> DocumentSnapshot | None:
        key = (collection, doc_id)
        if key not in self._base:
            snapshot = self._store._fetch(collection, doc_id)
            self._remember(key, snapshot)
        return self._view(key)

    def query(self, collection: str, filters: Iterable[Filter | tuple] | None = None) -> list[DocumentSnapshot]:
        normalized = normalize_filters(filters)
        results = self._store._fetch_many(collection, normalized)
        self.query_results.append((collection, normalized, {s.id: s.version for s in results}))

        ordered_ids = []
        for snapshot in results:
            key = (collection, snapshot.id)
            if key not in self._base:
                self._remember(key, snapshot)
            ordered_ids.append(snapshot.id)
        seen = set(ordered_ids)
        ordered_ids.extend(
            doc_id for (name, doc_id) in self.writes
            if name == collection and doc_id not in seen
        )

        views = []
        for doc_id in ordered_ids:
            view = self._view((collection, doc_id))
            if view is not None and matches_all(view.data, normalized):
                views.append(view)
        return views

    # ----------------------------------------------------------------- writes

    def add(self, collection: str, data: dict[str, Any], doc_id: str | None = None) -> str:
        if doc_id is None:
            doc_id = uuid.uuid4().hex
            self._remember((collection, doc_id), None)
        elif self.get(collection, doc_id) is not None:
            raise DocumentExistsError(collection, doc_id)
        self.writes[(collection, doc_id)] = PendingWrite(WRITE_SET, copy.deepcopy(data))
        return doc_id

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        if self.get(collection, doc_id) is None:
            raise DocumentMissingError(collection, doc_id)
        key = (collection, doc_id)
        pending = self.writes.get(key)
        if pending is None:
            self.writes[key] = PendingWrite(WRITE_UPDATE, copy.deepcopy(fields))
        else:
            pending.data.update(copy.deepcopy(fields))

    def delete(self, collection: str, doc_id: str) -> None:
        if self.get(collection, doc_id) is None:
            raise DocumentMissingError(collection, doc_id)
        key = (collection, doc_id)
        if self._base.get(key) is None:
            # created in this transaction, never stored
            del self.writes[key]
        else:
            self.writes[key] = PendingWrite(WRITE_DELETE)

    # ---------------------------------------------------------------- helpers

    def _remember(self, key: tuple[str, str], snapshot: DocumentSnapshot | None) -> None:
        self._base[key] = snapshot
        self.read_versions.setdefault(key, snapshot.version if snapshot else MISSING_VERSION)

    def _view(self, key: tuple[str, str]) -> DocumentSnapshot | None:
        base = self._base.get(key)
        write = self.writes.get(key)
        if write is None:
            if base is None:
                return None
            return DocumentSnapshot(base.collection, base.id, copy.deepcopy(base.data), base.version)
        data = apply_write(base.data if base else None, write)
        if data is None:
            return None
        version = base.version if base else MISSING_VERSION
        return DocumentSnapshot(key[0], key[1], data, version)


class DocumentStore(ABC):
    """
    Abstract base class for document store backends.

    Backends implement three primitives: ``_fetch`` (one document),
    ``_fetch_many`` (filtered collection scan) and ``_commit`` (validate a
    transaction's reads and apply its writes atomically, raising
    ``WriteConflict`` when a read went stale).

    Attributes:
        max_attempts: Transaction attempts before TransactionConflictError
        base_delay: Backoff before the second attempt, doubling afterwards
        max_delay: Cap for a single backoff sleep
        jitter: Maximum random seconds added to each sleep
    """

    backend_name: str = 'base'

    def __init__(
        self,
        max_attempts: int = TransactionConfig.MAX_ATTEMPTS,
        base_delay: float = TransactionConfig.BASE_DELAY,
        max_delay: float = TransactionConfig.MAX_DELAY,
        jitter: float = TransactionConfig.JITTER,
    ):
        if max_attempts < 1:
            raise StoreError('max_attempts must be at least 1')
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter

    @abstractmethod
    def _fetch(self, collection: str, doc_id: str) -> DocumentSnapshot | None:
        """Read one document, or None when it does not exist."""
        pass

    @abstractmethod
    def _fetch_many(self, collection: str, filters: tuple[Filter, ...]) -> list[DocumentSnapshot]:
        """Read every document of ``collection`` matching all ``filters``."""
        pass

    @abstractmethod
    def _commit(self, tx: Transaction) -> None:
        """
        Validate ``tx`` reads against current versions and apply its writes.

        Raises:
            WriteConflict: A read document or query result set changed
        """
        pass

    # ------------------------------------------------------------- public API

    def get(self, collection: str, doc_id: str) -> DocumentSnapshot | None:
        return self._fetch(collection, doc_id)

    def query(self, collection: str, filters: Iterable[Filter | tuple] | None = None) -> list[DocumentSnapshot]:
        return self._fetch_many(collection, normalize_filters(filters))

    def add(self, collection: str, data: dict[str, Any], doc_id: str | None = None) -> str:
        return self.transaction(lambda tx: tx.add(collection, data, doc_id))

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self.transaction(lambda tx: tx.update(collection, doc_id, fields))

    def delete(self, collection: str, doc_id: str) -> None:
        self.transaction(lambda tx: tx.delete(collection, doc_id))

    def transaction(self, body: Callable[[Transaction], T]) -> T:
        """Run ``body`` atomically, retrying on write conflicts.

        Args:
            body: Callable receiving a ``Transaction``; its return value is
                returned once the transaction commits

        Raises:
            TransactionConflictError: Still conflicting after max_attempts
        """
        for attempt in range(1, self.max_attempts + 1):
            tx = Transaction(self)
            result = body(tx)
            try:
                self._commit(tx)
            except WriteConflict as exc:
                if attempt >= self.max_attempts:
                    logger.error(f"Transaction gave up after {attempt} attempts: {exc}")
                    raise TransactionConflictError(attempt) from exc
                delay = self._backoff(attempt)
                logger.debug(f"Write conflict on attempt {attempt} ({exc}); retrying in {delay:.3f}s")
                time.sleep(delay)
                continue
            return result
        raise AssertionError('unreachable')

    # ---------------------------------------------------------------- helpers

    def _backoff(self, attempt: int) -> float:
        delay = min(self.max_delay, self.base_delay * 2 ** (attempt - 1))
        return delay + random.uniform(0, self.jitter)

    @staticmethod
    def _validate(
        tx: Transaction,
        version_of: Callable[[str, str], int],
        run_query: Callable[[str, tuple[Filter, ...]], list[DocumentSnapshot]],
    ) -> None:
        """Raise WriteConflict if anything ``tx`` read has changed since."""
        for (collection, doc_id), expected in tx.read_versions.items():
            current = version_of(collection, doc_id)
            if current != expected:
                raise WriteConflict(f"{collection}/{doc_id} moved from v{expected} to v{current}")

        for collection, filters, expected in tx.query_results:
            current = {s.id: s.version for s in run_query(collection, filters)}
            if current != expected:
                raise WriteConflict(f"query on {collection} changed since it was read")
