"""
Django admin configuration for the audit trail (read-only).
"""

from django.contrib import admin
from .models import AuditEvent


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ['audit_id', 'timestamp', 'actor_id', 'entity_type', 'entity_id', 'action']
    list_filter = ['action', 'entity_type']
    search_fields = ['entity_id', 'reason']
    ordering = ['-audit_id']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
