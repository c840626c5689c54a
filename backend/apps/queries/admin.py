"""
Django admin configuration for discrepancy notes.
"""

from django.contrib import admin
from .models import DiscrepancyNote


@admin.register(DiscrepancyNote)
class DiscrepancyNoteAdmin(admin.ModelAdmin):
    list_display = [
        'note_id', 'crf_instance', 'parent', 'note_type', 'resolution_status',
        'assigned_user_id', 'created_at',
    ]
    list_filter = ['note_type', 'resolution_status']
    search_fields = ['description', 'item_name']
    raw_id_fields = ['crf_instance', 'parent']
    ordering = ['-created_at']
