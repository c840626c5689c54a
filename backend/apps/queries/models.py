"""
Discrepancy note models.

Architecture Integration:
- Queries are raised against a CRF instance (optionally a single item)
- Open root queries block lock, freeze and sign of that CRF
- Responses are child notes of the root; the root carries the thread status

Models:
- FACT_DISCREPANCY_NOTE
"""

from django.db import models
from apps.core.models import CRFInstance


class NoteType(models.TextChoices):
    QUERY = 'query', 'Query'
    ANNOTATION = 'annotation', 'Annotation'
    FAILED_VALIDATION_CHECK = 'failed_validation_check', 'Failed Validation Check'
    REASON_FOR_CHANGE = 'reason_for_change', 'Reason for Change'


class ResolutionStatus(models.TextChoices):
    NEW = 'new', 'New'
    UPDATED = 'updated', 'Updated'
    RESOLUTION_PROPOSED = 'resolution_proposed', 'Resolution Proposed'
    CLOSED = 'closed', 'Closed'


OPEN_STATUSES = (
    ResolutionStatus.NEW,
    ResolutionStatus.UPDATED,
    ResolutionStatus.RESOLUTION_PROPOSED,
)


class DiscrepancyNoteQuerySet(models.QuerySet):

    def roots(self):
        return self.filter(parent__isnull=True)

    def open(self):
        return self.roots().filter(resolution_status__in=OPEN_STATUSES)

    def open_queries(self):
        """Open root notes of type query (the ones that block progression)."""
        return self.open().filter(note_type=NoteType.QUERY)

    def for_crf(self, crf_instance_id):
        return self.filter(crf_instance_id=crf_instance_id)

    def for_study(self, study_id):
        return self.filter(crf_instance__study_event__subject__study_id=study_id)


class DiscrepancyNote(models.Model):
    """
    FACT_DISCREPANCY_NOTE - Query, annotation or response on a CRF.

    Business Rules:
    - parent NULL marks the root of a thread; responses are children
    - Only the root's resolution_status is meaningful for the thread
    - Lifecycle: new → updated → resolution_proposed → closed; reopen → new
    - Never deleted; every status change is written to the audit trail
    """

    note_id = models.AutoField(primary_key=True)

    crf_instance = models.ForeignKey(
        CRFInstance,
        on_delete=models.CASCADE,
        related_name='discrepancy_notes',
        help_text="CRF instance this note concerns"
    )

    item_name = models.CharField(
        max_length=200,
        null=True,
        blank=True,
        help_text="Data item the note is attached to (empty = form level)"
    )

    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='responses',
        help_text="Root note of the thread (empty for the root itself)"
    )

    note_type = models.CharField(
        max_length=30,
        choices=NoteType.choices,
        default=NoteType.QUERY,
    )

    resolution_status = models.CharField(
        max_length=30,
        choices=ResolutionStatus.choices,
        default=ResolutionStatus.NEW,
    )

    description = models.CharField(max_length=255)
    detailed_notes = models.TextField(blank=True, default='')

    owner_id = models.IntegerField(help_text="User who raised the note")
    assigned_user_id = models.IntegerField(
        null=True,
        blank=True,
        help_text="User expected to act on the query"
    )

    # Audit fields
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    updated_by = models.IntegerField(null=True, blank=True)
    closed_by = models.IntegerField(null=True, blank=True)
    closed_at = models.DateTimeField(null=True, blank=True)

    objects = DiscrepancyNoteQuerySet.as_manager()

    class Meta:
        db_table = 'fact_discrepancy_note'
        verbose_name = 'Discrepancy Note'
        verbose_name_plural = 'Discrepancy Notes'
        ordering = ['created_at', 'note_id']
        indexes = [
            models.Index(fields=['crf_instance', 'resolution_status']),
            models.Index(fields=['parent', 'created_at']),
            models.Index(fields=['assigned_user_id', 'resolution_status']),
        ]

    def __str__(self):
        return f"Note {self.note_id} ({self.resolution_status})"

    @property
    def is_root(self):
        return self.parent_id is None

    @property
    def is_open(self):
        return self.is_root and self.resolution_status in OPEN_STATUSES
