"""
Django ORM document store backend and the configured-store factory.

``DjangoDocumentStore`` keeps one ``Document`` row per document. Transaction
bodies read without locks; the commit runs inside ``transaction.atomic()``,
locks every touched row with ``select_for_update()``, re-validates versions
and query result sets, then applies version-conditioned writes. Integrity
and operational errors raised by the database during commit (unique
violations from concurrent inserts, deadlocks, serialization failures,
locked SQLite files) are reported as write conflicts and retried.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from django.conf import settings
from django.db import IntegrityError, OperationalError, transaction
from django.utils import timezone
from django.utils.module_loading import import_string

from .base import (
    MISSING_VERSION,
    WRITE_DELETE,
    DocumentSnapshot,
    DocumentStore,
    Filter,
    Transaction,
    WriteConflict,
    apply_write,
    matches_all,
)
from .models import Document

logger = logging.getLogger(__name__)


class DjangoDocumentStore(DocumentStore):
    """Document store persisted through the Django ORM."""

    backend_name = 'django'

    def __init__(self, using: str = 'default', **options: Any):
        super().__init__(**options)
        self.using = using

    def _documents(self):
        return Document.objects.using(self.using)

    def _fetch(self, collection: str, doc_id: str) -> DocumentSnapshot | None:
        row = self._documents().filter(collection=collection, doc_id=doc_id).first()
        return row.to_snapshot() if row else None

    def _fetch_many(self, collection: str, filters: tuple[Filter, ...]) -> list[DocumentSnapshot]:
        queryset = self._documents().filter(collection=collection)
        for item in filters:
            # Only string equality is pushed down; JSON typing of other
            # scalars differs between SQLite and PostgreSQL.
            if item.op == '==' and isinstance(item.value, str):
                queryset = queryset.filter(**{f'data__{item.field}': item.value})
        return [
            row.to_snapshot()
            for row in queryset.order_by('id')
            if matches_all(row.data, filters)
        ]

    def _lock_rows(self, keys) -> dict[tuple[str, str], Document]:
        by_collection: dict[str, list[str]] = defaultdict(list)
        for collection, doc_id in keys:
            by_collection[collection].append(doc_id)

        rows = {}
        for collection, doc_ids in by_collection.items():
            locked = self._documents().select_for_update().filter(
                collection=collection,
                doc_id__in=doc_ids,
            )
            for row in locked:
                rows[(row.collection, row.doc_id)] = row
        return rows

    def _commit(self, tx: Transaction) -> None:
        keys = set(tx.read_versions) | set(tx.writes)
        try:
            with transaction.atomic(using=self.using):
                rows = self._lock_rows(keys)

                def version_of(collection: str, doc_id: str) -> int:
                    row = rows.get((collection, doc_id))
                    return row.version if row else MISSING_VERSION

                self._validate(tx, version_of, self._fetch_many)

                now = timezone.now()
                for key, write in tx.writes.items():
                    row = rows.get(key)
                    if row is None:
                        if write.kind != WRITE_DELETE:
                            self._documents().create(
                                collection=key[0],
                                doc_id=key[1],
                                data=apply_write(None, write),
                                version=1,
                            )
                        continue

                    current = self._documents().filter(pk=row.pk, version=row.version)
                    data = apply_write(row.data, write)
                    if data is None:
                        changed, _ = current.delete()
                    else:
                        changed = current.update(data=data, version=row.version + 1, updated_at=now)
                    if not changed:
                        raise WriteConflict(f"{key[0]}/{key[1]} changed during commit")
        except (IntegrityError, OperationalError) as exc:
            raise WriteConflict(f"database rejected commit: {exc}") from exc


def get_document_store() -> DocumentStore:
    """Build the document store configured in ``settings.DOCUMENT_STORE``.

    Example settings:
        DOCUMENT_STORE = {
            'BACKEND': 'store.backends.DjangoDocumentStore',
            'OPTIONS': {'max_attempts': 5, 'base_delay': 0.05},
        }
    """
    config = getattr(settings, 'DOCUMENT_STORE', {})
    backend_path = config.get('BACKEND', 'store.backends.DjangoDocumentStore')
    backend_cls = import_string(backend_path)
    store = backend_cls(**config.get('OPTIONS', {}))
    logger.info(f"Document store initialised: {backend_cls.__name__} (max_attempts={store.max_attempts})")
    return store
