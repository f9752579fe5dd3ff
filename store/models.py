"""
Document Model - Row-per-document storage for the Django store backend.

Each row holds one JSON document of one collection together with an
optimistic-concurrency version that is bumped on every committed write.
"""

from django.db import models

from .base import DocumentSnapshot


class Document(models.Model):
    """
    Stored document.

    Attributes:
        collection: Logical collection name (e.g. 'supervisors')
        doc_id: Document identifier, unique within its collection
        data: The document body
        version: Incremented on every committed write, starts at 1
        created_at: Row creation timestamp
        updated_at: Last committed write timestamp
    """

    collection = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Logical collection name",
    )
    doc_id = models.CharField(
        max_length=64,
        help_text="Document identifier within its collection",
    )
    data = models.JSONField(
        default=dict,
        help_text="Document body",
    )
    version = models.PositiveIntegerField(
        default=1,
        help_text="Optimistic concurrency version",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        app_label = "store"
        db_table = "documents"
        verbose_name = "Document"
        verbose_name_plural = "Documents"
        ordering = ["collection", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["collection", "doc_id"],
                name="uniq_document_collection_doc_id",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.collection}/{self.doc_id} v{self.version}"

    def to_snapshot(self) -> DocumentSnapshot:
        return DocumentSnapshot(self.collection, self.doc_id, self.data, self.version)
