"""Queries app configuration."""

from django.apps import AppConfig


class QueriesConfig(AppConfig):
    """Configuration for the query resolution workflow."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.queries'
    verbose_name = 'Discrepancy Notes'
