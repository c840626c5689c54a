"""
Audit Recorder for the EDC Form Lifecycle & Locking Engine.

Appends immutable, hash-chained audit events. Callers invoke ``record``
inside the same transaction as the state change it documents, so the audit
row and the mutation commit or roll back together.
"""

import hashlib
import logging
from django.db import models, transaction
from django.utils import timezone
from .models import GENESIS_HASH, AuditChainHead, AuditEvent, compute_data_hash

logger = logging.getLogger(__name__)


def chain_hash(data_hash, previous_hash):
    return hashlib.sha256(f"{data_hash}{previous_hash}".encode()).hexdigest()


class AuditRecorder:
    """
    Service for appending and reading the audit trail.
    """

    def record(self, actor_id, entity_type, entity_id, action,
               old_value=None, new_value=None, reason=''):
        """
        Append one audit event.

        Args:
            actor_id: User who performed the action
            entity_type: Type of entity (CRFInstance, DiscrepancyNote)
            entity_id: ID of entity
            action: AuditAction value
            old_value: JSON-serializable state before the change
            new_value: JSON-serializable state after the change
            reason: Free-text reason for change

        Returns:
            AuditEvent object
        """
        with transaction.atomic():
            head = self._lock_head()
            previous_hash = head.event_hash

            event = AuditEvent(
                actor_id=actor_id,
                entity_type=entity_type,
                entity_id=str(entity_id),
                action=action,
                old_value=old_value,
                new_value=new_value,
                reason=reason or '',
            )
            event.data_hash = compute_data_hash(event.payload())
            event.previous_hash = previous_hash
            event.event_hash = chain_hash(event.data_hash, previous_hash)
            event.save()

            AuditChainHead.objects.filter(pk=head.pk).update(
                event_hash=event.event_hash,
                last_audit_id=event.audit_id,
                updated_at=timezone.now(),
            )

        logger.debug("Audit event %s recorded for %s %s", action, entity_type, entity_id)
        return event

    def _lock_head(self):
        """
        Lock and return the chain head row.

        A missing head is created from the newest stored event (or genesis)
        and then locked like any other.
        """
        heads = AuditChainHead.objects.select_for_update()
        head = heads.filter(pk=AuditChainHead.SINGLETON_ID).first()
        if head is not None:
            return head

        latest = AuditEvent.objects.order_by('-audit_id').only('audit_id', 'event_hash').first()
        AuditChainHead.objects.get_or_create(
            pk=AuditChainHead.SINGLETON_ID,
            defaults={
                'event_hash': latest.event_hash if latest else GENESIS_HASH,
                'last_audit_id': latest.audit_id if latest else None,
            },
        )
        logger.info("Audit chain head created")
        return heads.get(pk=AuditChainHead.SINGLETON_ID)

    def verify_chain_integrity(self):
        """
        Verify entire audit chain integrity.

        Returns:
            - is_valid: Boolean
            - broken_links: List of broken chain links
            - tampered_events: List of events whose payload no longer matches its hash
        """
        events = AuditEvent.objects.order_by('audit_id')

        broken_links = []
        tampered_events = []

        previous_event = None
        for event in events.iterator():
            if (not event.verify_integrity()
                    or event.event_hash != chain_hash(event.data_hash, event.previous_hash)):
                tampered_events.append({
                    'audit_id': event.audit_id,
                    'event_hash': event.event_hash,
                    'reason': 'Data hash mismatch'
                })

            expected_previous = previous_event.event_hash if previous_event else GENESIS_HASH
            if event.previous_hash != expected_previous:
                broken_links.append({
                    'audit_id': event.audit_id,
                    'expected_previous': expected_previous,
                    'actual_previous': event.previous_hash
                })

            previous_event = event

        is_valid = not broken_links and not tampered_events
        if not is_valid:
            logger.warning(
                "Audit chain verification failed: %d broken links, %d tampered events",
                len(broken_links), len(tampered_events)
            )

        return {
            'is_valid': is_valid,
            'total_events': events.count(),
            'broken_links': broken_links,
            'tampered_events': tampered_events
        }

    def get_entity_history(self, entity_type, entity_id):
        """
        Get complete audit history for an entity.

        Returns chronological list of all recorded events.
        """
        events = AuditEvent.objects.for_entity(entity_type, entity_id).order_by('audit_id')

        return [
            {
                'audit_id': event.audit_id,
                'timestamp': event.timestamp.isoformat(),
                'action': event.action,
                'actor_id': event.actor_id,
                'old_value': event.old_value,
                'new_value': event.new_value,
                'reason': event.reason,
                'event_hash': event.event_hash,
            }
            for event in events
        ]

    def get_audit_stats(self):
        """Get audit trail statistics."""
        action_counts = AuditEvent.objects.values('action').annotate(
            count=models.Count('audit_id')
        ).order_by('action')

        latest = AuditEvent.objects.order_by('-audit_id').first()

        return {
            'total_events': AuditEvent.objects.count(),
            'latest_audit_id': latest.audit_id if latest else 0,
            'action_distribution': list(action_counts),
        }
