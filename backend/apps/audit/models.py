"""
Audit Trail Models.

Stores immutable, hash-chained records of every lifecycle and query
transition (21 CFR Part 11 audit trail).
"""

from django.db import models
from django.utils import timezone
import hashlib
import json


GENESIS_HASH = '0' * 64


class ImmutableAuditError(Exception):
    """Raised on any attempt to modify or delete recorded audit history."""


class AuditAction(models.TextChoices):
    CRF_LOCKED = 'CRF_LOCKED', 'CRF Locked'
    CRF_UNLOCKED = 'CRF_UNLOCKED', 'CRF Unlocked'
    CRF_FROZEN = 'CRF_FROZEN', 'CRF Frozen'
    CRF_UNFROZEN = 'CRF_UNFROZEN', 'CRF Unfrozen'
    CRF_SDV_VERIFIED = 'CRF_SDV_VERIFIED', 'SDV Verified'
    CRF_SIGNED = 'CRF_SIGNED', 'CRF Signed'
    SUBJECT_LOCKED = 'SUBJECT_LOCKED', 'Subject Data Locked'
    SUBJECT_UNLOCKED = 'SUBJECT_UNLOCKED', 'Subject Data Unlocked'
    EVENT_LOCKED = 'EVENT_LOCKED', 'Event Data Locked'
    EVENT_UNLOCKED = 'EVENT_UNLOCKED', 'Event Data Unlocked'
    QUERY_CREATED = 'QUERY_CREATED', 'Query Created'
    QUERY_RESPONSE = 'QUERY_RESPONSE', 'Query Response'
    QUERY_STATUS_CHANGED = 'QUERY_STATUS_CHANGED', 'Query Status Changed'
    QUERY_RESOLUTION_PROPOSED = 'QUERY_RESOLUTION_PROPOSED', 'Resolution Proposed'
    QUERY_CLOSED = 'QUERY_CLOSED', 'Query Closed'
    QUERY_REOPENED = 'QUERY_REOPENED', 'Query Reopened'
    QUERY_REASSIGNED = 'QUERY_REASSIGNED', 'Query Reassigned'


def compute_data_hash(payload):
    """SHA-256 over the canonical (sorted-key) JSON form of payload."""
    data_str = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(data_str.encode()).hexdigest()


class AuditEventQuerySet(models.QuerySet):

    def update(self, **kwargs):
        raise ImmutableAuditError("Audit events cannot be updated")

    def delete(self):
        raise ImmutableAuditError("Audit events cannot be deleted")

    def for_entity(self, entity_type, entity_id):
        return self.filter(entity_type=entity_type, entity_id=str(entity_id))


class AuditEvent(models.Model):
    """
    Immutable audit record: who did what to which entity, when and why.

    Each event stores a fingerprint of its payload and the hash of the
    previous event, so tampering with any historical row breaks the chain
    (see AuditRecorder.verify_chain_integrity).
    """

    audit_id = models.BigAutoField(primary_key=True)

    actor_id = models.IntegerField(
        help_text="User who performed the action (resolved by the caller)"
    )

    timestamp = models.DateTimeField(
        default=timezone.now,
        help_text="When the action was recorded"
    )

    # Business entity reference
    entity_type = models.CharField(
        max_length=50,
        help_text="Type of entity (CRFInstance, DiscrepancyNote, ...)"
    )

    entity_id = models.CharField(
        max_length=100,
        help_text="ID of the entity"
    )

    action = models.CharField(
        max_length=50,
        choices=AuditAction.choices,
        help_text="Action performed"
    )

    old_value = models.JSONField(null=True, blank=True)
    new_value = models.JSONField(null=True, blank=True)

    reason = models.TextField(
        blank=True,
        default='',
        help_text="Free-text reason for change"
    )

    # Data fingerprint and chain linkage
    data_hash = models.CharField(
        max_length=64,
        help_text="SHA-256 hash of the event payload"
    )

    previous_hash = models.CharField(
        max_length=64,
        help_text="event_hash of the preceding audit event"
    )

    event_hash = models.CharField(
        max_length=64,
        unique=True,
        help_text="SHA-256 over payload hash and previous hash"
    )

    objects = AuditEventQuerySet.as_manager()

    class Meta:
        db_table = 'audit_event'
        ordering = ['-audit_id']
        indexes = [
            models.Index(fields=['entity_type', 'entity_id']),
            models.Index(fields=['action', '-timestamp']),
        ]

    def __str__(self):
        return f"{self.entity_type} {self.entity_id}: {self.action}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableAuditError("Audit events cannot be updated")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableAuditError("Audit events cannot be deleted")

    def payload(self):
        return {
            'actor_id': self.actor_id,
            'timestamp': self.timestamp.isoformat(),
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'action': self.action,
            'old_value': self.old_value,
            'new_value': self.new_value,
            'reason': self.reason,
        }

    def verify_integrity(self):
        """
        Verify the event payload by recomputing its hash.

        Returns True if data matches hash, False if tampered.
        """
        return compute_data_hash(self.payload()) == self.data_hash


class AuditChainHead(models.Model):
    """
    Single row carrying the hash of the newest audit event.

    Writers lock this row before linking a new event, so appends are
    serialized even while the trail is empty and there is no event row
    to lock.
    """

    SINGLETON_ID = 1

    head_id = models.PositiveSmallIntegerField(primary_key=True, default=SINGLETON_ID)

    event_hash = models.CharField(
        max_length=64,
        default=GENESIS_HASH,
        help_text="event_hash of the newest audit event"
    )

    last_audit_id = models.BigIntegerField(null=True, blank=True)

    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'audit_chain_head'

    def __str__(self):
        return f"Audit chain head at {self.last_audit_id}"
