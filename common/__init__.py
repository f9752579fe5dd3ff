"""Shared exceptions, result envelope, configuration and API schemas."""
