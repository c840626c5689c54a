"""
Django admin configuration for core models.

Provides admin interface for managing:
- Studies, Sites, Subjects
- Study events, form definitions and CRF instances
"""

from django.contrib import admin
from .models import Study, Site, Subject, StudyEvent, FormDefinition, CRFInstance


@admin.register(Study)
class StudyAdmin(admin.ModelAdmin):
    list_display = ['study_id', 'study_name', 'status']
    list_filter = ['status']
    search_fields = ['study_id', 'study_name']
    ordering = ['study_id']


@admin.register(Site)
class SiteAdmin(admin.ModelAdmin):
    list_display = ['site_id', 'site_number', 'site_name', 'study']
    list_filter = ['study']
    search_fields = ['site_id', 'site_number', 'site_name']
    ordering = ['site_number']


@admin.register(Subject)
class SubjectAdmin(admin.ModelAdmin):
    list_display = ['subject_id', 'label', 'study', 'site', 'subject_status']
    list_filter = ['subject_status', 'study']
    search_fields = ['subject_id', 'label']
    ordering = ['study', 'label']


@admin.register(StudyEvent)
class StudyEventAdmin(admin.ModelAdmin):
    list_display = ['study_event_id', 'subject', 'event_name', 'status', 'scheduled_date']
    list_filter = ['status']
    search_fields = ['event_name', 'subject__label']
    ordering = ['subject', 'scheduled_date']


@admin.register(FormDefinition)
class FormDefinitionAdmin(admin.ModelAdmin):
    list_display = ['form_definition_id', 'form_oid', 'form_name', 'version']
    search_fields = ['form_oid', 'form_name']


@admin.register(CRFInstance)
class CRFInstanceAdmin(admin.ModelAdmin):
    list_display = [
        'crf_instance_id', 'study_event', 'form_definition', 'status',
        'completion_phase', 'sdv_verified', 'signed', 'frozen',
    ]
    list_filter = ['status', 'completion_phase', 'sdv_verified', 'signed', 'frozen']
    search_fields = ['crf_instance_id', 'study_event__subject__label']
    readonly_fields = [
        'locked_by', 'locked_at', 'frozen_by', 'frozen_at',
        'sdv_verified_by', 'sdv_verified_at', 'signed_by', 'signed_at',
    ]
