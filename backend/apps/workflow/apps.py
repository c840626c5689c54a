"""Workflow app configuration."""

from django.apps import AppConfig


class WorkflowConfig(AppConfig):
    """Configuration for the form lifecycle engine."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.workflow'
    verbose_name = 'Form Lifecycle'
