"""Django app configuration for store module."""

from django.apps import AppConfig


class StoreConfig(AppConfig):
    """Configuration for the document store application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "store"
    verbose_name = "Document Store"
