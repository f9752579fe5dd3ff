"""Django app configuration for matching module."""

from django.apps import AppConfig


class MatchingAppConfig(AppConfig):
    """Configuration for the matching engine application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "matching"
    verbose_name = "Matching Engine"
