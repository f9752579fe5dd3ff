# Generated manually for store module

from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Document",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "collection",
                    models.CharField(
                        db_index=True,
                        help_text="Logical collection name",
                        max_length=64,
                    ),
                ),
                (
                    "doc_id",
                    models.CharField(
                        help_text="Document identifier within its collection",
                        max_length=64,
                    ),
                ),
                (
                    "data",
                    models.JSONField(default=dict, help_text="Document body"),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Optimistic concurrency version",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Document",
                "verbose_name_plural": "Documents",
                "db_table": "documents",
                "ordering": ["collection", "id"],
            },
        ),
        migrations.AddConstraint(
            model_name="document",
            constraint=models.UniqueConstraint(
                fields=("collection", "doc_id"),
                name="uniq_document_collection_doc_id",
            ),
        ),
    ]
