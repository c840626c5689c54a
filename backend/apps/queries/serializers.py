"""
API Serializers for discrepancy notes.
"""

from django.conf import settings
from rest_framework import serializers
from .models import DiscrepancyNote, NoteType, ResolutionStatus
from .services import RESPONSE_STATUSES


class DiscrepancyNoteSerializer(serializers.ModelSerializer):
    """Query or response as returned by list and thread endpoints."""

    query_id = serializers.IntegerField(source='note_id', read_only=True)
    crf_instance_id = serializers.IntegerField(read_only=True)
    parent_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = DiscrepancyNote
        fields = [
            'query_id', 'crf_instance_id', 'parent_id', 'item_name', 'note_type',
            'resolution_status', 'description', 'detailed_notes', 'owner_id',
            'assigned_user_id', 'created_at', 'updated_at', 'updated_by',
            'closed_by', 'closed_at',
        ]


class CreateQuerySerializer(serializers.Serializer):
    crf_instance_id = serializers.IntegerField(min_value=1)
    description = serializers.CharField(max_length=255)
    detailed_notes = serializers.CharField(required=False, allow_blank=True, default='')
    note_type = serializers.ChoiceField(choices=NoteType.choices, default=NoteType.QUERY)
    item_name = serializers.CharField(required=False, allow_null=True, default=None, max_length=200)
    assigned_user_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    actor_id = serializers.IntegerField(required=False, min_value=1)


class RespondSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=255)
    detailed_notes = serializers.CharField(required=False, allow_blank=True, default='')
    new_status = serializers.ChoiceField(
        choices=[(value, ResolutionStatus(value).label) for value in RESPONSE_STATUSES],
        required=False,
        allow_null=True,
        default=None,
    )
    actor_id = serializers.IntegerField(required=False, min_value=1)


class NoteSerializer(serializers.Serializer):
    """Optional free-text note (propose, close)."""

    note = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)
    actor_id = serializers.IntegerField(required=False, min_value=1)


class ReopenSerializer(serializers.Serializer):
    reason = serializers.CharField()
    actor_id = serializers.IntegerField(required=False, min_value=1)


class ReassignSerializer(serializers.Serializer):
    assigned_user_id = serializers.IntegerField(min_value=1)
    actor_id = serializers.IntegerField(required=False, min_value=1)


class BulkCloseSerializer(serializers.Serializer):
    ids = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False)
    reason = serializers.CharField(required=False, allow_blank=True, default='')
    actor_id = serializers.IntegerField(required=False, min_value=1)

    def validate_ids(self, value):
        limit = settings.LIFECYCLE_BATCH_MAX_IDS
        if len(value) > limit:
            raise serializers.ValidationError(
                f"A batch may contain at most {limit} ids ({len(value)} given)"
            )
        return value


class BulkStatusSerializer(BulkCloseSerializer):
    new_status = serializers.ChoiceField(choices=ResolutionStatus.choices)
