"""
Record-level helpers over a store ``Transaction``.

These keep the services free of collection names and snapshot decoding.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import TypeVar

from common.exceptions import NotFoundError
from store.base import Transaction

from .records import DocumentRecord, SupervisorRecord

R = TypeVar('R', bound=DocumentRecord)


def fetch(tx: Transaction, record_cls: type[R], doc_id: str | None) -> R | None:
    if not doc_id:
        return None
    snapshot = tx.get(record_cls.collection, doc_id)
    return record_cls.from_snapshot(snapshot) if snapshot else None


def require(tx: Transaction, record_cls: type[R], doc_id: str) -> R:
    """Fetch a record or raise NotFoundError."""
    record = fetch(tx, record_cls, doc_id)
    if record is None:
        raise NotFoundError(record_cls.collection, doc_id)
    return record


def find(tx: Transaction, record_cls: type[R], filters) -> list[R]:
    return [record_cls.from_snapshot(snapshot) for snapshot in tx.query(record_cls.collection, filters)]


def insert(tx: Transaction, record: R) -> R:
    """Add a new document for ``record`` and return it with its assigned id."""
    doc_id = tx.add(record.collection, record.to_document())
    return replace(record, id=doc_id)


def save_capacity(tx: Transaction, supervisor: SupervisorRecord, now: datetime) -> SupervisorRecord:
    """Write back a supervisor's capacity counters after a ledger operation."""
    updated = replace(supervisor, updated_at=now)
    tx.update(
        SupervisorRecord.collection,
        supervisor.id,
        updated.document_fields('current_capacity', 'max_capacity', 'updated_at'),
    )
    return updated
