"""
API Serializers for the form lifecycle endpoints.
Validate request payloads; responses are built from result objects.
"""

from django.conf import settings
from rest_framework import serializers
from .eligibility import SCOPES
from .worklists import DEFAULT_PAGE_SIZE, SDV_STATUSES


class TransitionRequestSerializer(serializers.Serializer):
    """Body of a single-CRF transition request."""

    actor_id = serializers.IntegerField(required=False, min_value=1)
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class BatchRequestSerializer(serializers.Serializer):
    """Body of a batch transition request."""

    ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        allow_empty=False,
    )
    actor_id = serializers.IntegerField(required=False, min_value=1)

    def validate_ids(self, value):
        limit = settings.LIFECYCLE_BATCH_MAX_IDS
        if len(value) > limit:
            raise serializers.ValidationError(
                f"A batch may contain at most {limit} ids ({len(value)} given)"
            )
        return value


class EligibilityQuerySerializer(serializers.Serializer):
    """Query parameters of the eligibility check."""

    scope = serializers.ChoiceField(choices=SCOPES)
    id = serializers.IntegerField(min_value=1)


class ScopeRequestSerializer(serializers.Serializer):
    """Body of a subject or event lock / unlock request."""

    actor_id = serializers.IntegerField(required=False, min_value=1)
    reason = serializers.CharField()


class WorklistQuerySerializer(serializers.Serializer):
    """Query parameters shared by the worklist endpoints."""

    study_id = serializers.CharField(required=False)
    subject_id = serializers.IntegerField(required=False, min_value=1)
    status = serializers.ChoiceField(choices=SDV_STATUSES, required=False)
    page = serializers.IntegerField(required=False, min_value=1, default=1)
    limit = serializers.IntegerField(
        required=False, min_value=1, max_value=100, default=DEFAULT_PAGE_SIZE
    )
