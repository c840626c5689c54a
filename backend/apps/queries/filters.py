"""
django-filter FilterSet for the query list endpoint.
"""

import django_filters
from .models import DiscrepancyNote, NoteType, ResolutionStatus


class DiscrepancyNoteFilter(django_filters.FilterSet):
    crf_instance = django_filters.NumberFilter(field_name='crf_instance_id')
    resolution_status = django_filters.ChoiceFilter(choices=ResolutionStatus.choices)
    note_type = django_filters.ChoiceFilter(choices=NoteType.choices)
    assigned_user_id = django_filters.NumberFilter()
    study_id = django_filters.CharFilter(field_name='crf_instance__study_event__subject__study_id')
    is_open = django_filters.BooleanFilter(method='filter_open')

    class Meta:
        model = DiscrepancyNote
        fields = ['crf_instance', 'resolution_status', 'note_type', 'assigned_user_id', 'item_name']

    def filter_open(self, queryset, name, value):
        if value is None:
            return queryset
        opened = queryset.open()
        return opened if value else queryset.exclude(note_id__in=opened.values('note_id'))
