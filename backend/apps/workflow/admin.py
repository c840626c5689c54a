"""
Django admin configuration for workflow configuration.
"""

from django.contrib import admin
from .models import FormWorkflowConfig


@admin.register(FormWorkflowConfig)
class FormWorkflowConfigAdmin(admin.ModelAdmin):
    list_display = [
        'config_id', 'form_definition', 'study', 'requires_sdv',
        'requires_signature', 'requires_dde',
    ]
    list_filter = ['requires_sdv', 'requires_signature', 'requires_dde', 'study']
    search_fields = ['form_definition__form_oid', 'form_definition__form_name']
