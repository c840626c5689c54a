"""Audit trail app configuration."""

from django.apps import AppConfig


class AuditConfig(AppConfig):
    """Configuration for the immutable audit trail app."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.audit'
    verbose_name = 'Audit Trail'
