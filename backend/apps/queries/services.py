"""
Query Resolution Workflow.

Moves discrepancy notes through new → updated → resolution_proposed →
closed (reopen re-enters new). Every status change is a conditional update
on the expected prior status, written to the audit trail in the same
transaction, with notifications dispatched after commit.

Business failures come back as QueryActionResult; only infrastructure
errors (DatabaseError) and programming errors (ValueError) raise.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from django.db import DatabaseError, transaction
from django.db.models import Count
from django.utils import timezone
from apps.audit.models import AuditAction
from apps.audit.services import AuditRecorder
from apps.core.models import CRFInstance
from apps.notifications.models import NotificationType
from apps.notifications.services import NotificationDispatcher
from apps.workflow.config import config_for_crf
from apps.workflow.results import BatchResult
from .models import DiscrepancyNote, NoteType, ResolutionStatus

logger = logging.getLogger(__name__)

ENTITY_TYPE = 'DiscrepancyNote'

ALLOWED_TRANSITIONS = {
    ResolutionStatus.NEW: {
        ResolutionStatus.UPDATED,
        ResolutionStatus.RESOLUTION_PROPOSED,
        ResolutionStatus.CLOSED,
    },
    ResolutionStatus.UPDATED: {
        ResolutionStatus.RESOLUTION_PROPOSED,
        ResolutionStatus.CLOSED,
    },
    ResolutionStatus.RESOLUTION_PROPOSED: {
        ResolutionStatus.UPDATED,
        ResolutionStatus.CLOSED,
    },
    ResolutionStatus.CLOSED: {
        ResolutionStatus.NEW,
    },
}

RESPONSE_STATUSES = (ResolutionStatus.UPDATED, ResolutionStatus.RESOLUTION_PROPOSED)


def can_transition(current, target):
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _validate_status(value):
    if value not in ResolutionStatus.values:
        raise ValueError(f"Unknown resolution status: {value!r}")
    return ResolutionStatus(value)


@dataclass
class QueryActionResult:
    success: bool
    message: str
    query_id: int = None
    response_id: int = None
    not_found: bool = False

    def as_dict(self):
        data = {
            'success': self.success,
            'message': self.message,
            'query_id': self.query_id,
        }
        if self.response_id is not None:
            data['response_id'] = self.response_id
        return data


class QueryThread:
    """
    Root query followed by its responses in creation order.

    Each iteration re-reads the store, so a thread object can be iterated
    again after new responses are added.
    """

    def __init__(self, query_id):
        self.query_id = query_id

    def __iter__(self):
        root = (
            DiscrepancyNote.objects.roots()
            .filter(note_id=self.query_id)
            .first()
        )
        if root is None:
            return
        yield root
        yield from (
            DiscrepancyNote.objects
            .filter(parent_id=root.note_id)
            .order_by('created_at', 'note_id')
            .iterator()
        )

    def exists(self):
        return DiscrepancyNote.objects.roots().filter(note_id=self.query_id).exists()


class QueryWorkflow:
    """
    Service for raising, answering and resolving queries.
    """

    def __init__(self, audit=None, notifier=None):
        self.audit = audit or AuditRecorder()
        self.notifier = notifier or NotificationDispatcher()

    # ------------------------------------------------------------------
    # Creation and responses
    # ------------------------------------------------------------------

    def create_query(self, crf_instance_id, actor_id, description, detailed_notes='',
                     note_type=NoteType.QUERY, item_name=None, assigned_user_id=None):
        """
        Raise a new root note against a CRF instance.

        The assignee defaults to the first user routed by the form's
        workflow configuration.
        """
        if note_type not in NoteType.values:
            raise ValueError(f"Unknown note type: {note_type!r}")

        with transaction.atomic():
            crf = (
                CRFInstance.objects.select_for_update()
                .filter(crf_instance_id=crf_instance_id)
                .first()
            )
            if crf is None:
                return QueryActionResult(
                    False, f"CRF {crf_instance_id} not found", not_found=True
                )
            if crf.is_removed:
                return QueryActionResult(
                    False, f"Cannot raise a query on removed CRF {crf_instance_id}"
                )
            if crf.is_locked:
                return QueryActionResult(
                    False, f"Cannot raise a query on locked CRF {crf_instance_id}"
                )

            if assigned_user_id is None:
                assigned_user_id = config_for_crf(crf).default_query_assignee

            query = DiscrepancyNote.objects.create(
                crf_instance=crf,
                item_name=item_name,
                note_type=note_type,
                resolution_status=ResolutionStatus.NEW,
                description=description,
                detailed_notes=detailed_notes or '',
                owner_id=actor_id,
                assigned_user_id=assigned_user_id,
                updated_by=actor_id,
            )

            self.audit.record(
                actor_id=actor_id,
                entity_type=ENTITY_TYPE,
                entity_id=query.note_id,
                action=AuditAction.QUERY_CREATED,
                new_value={
                    'crf_instance_id': crf.crf_instance_id,
                    'note_type': note_type,
                    'resolution_status': ResolutionStatus.NEW,
                    'assigned_user_id': assigned_user_id,
                    'description': description,
                },
            )

            self._notify(
                [assigned_user_id], actor_id, NotificationType.QUERY_ASSIGNED,
                'Query assigned',
                f"Query {query.note_id} on CRF {crf.crf_instance_id}: {description}",
                query, crf.study_id,
            )

        logger.info("Query %s created on CRF %s by user %s", query.note_id, crf_instance_id, actor_id)
        return QueryActionResult(True, 'Query created', query_id=query.note_id)

    def respond(self, query_id, actor_id, description, detailed_notes='', new_status=None):
        """
        Add a response to an open query.

        Args:
            new_status: Status the query moves to (updated by default,
                or resolution_proposed)
        """
        target = _validate_status(new_status or ResolutionStatus.UPDATED)
        if target not in RESPONSE_STATUSES:
            raise ValueError(f"A response cannot set status {target.value!r}")

        return self._change_status(
            query_id, actor_id, target,
            response={'description': description, 'detailed_notes': detailed_notes},
            allow_same=True,
            action=AuditAction.QUERY_RESPONSE,
        )

    def propose_resolution(self, query_id, actor_id, note=None):
        response = None
        if note:
            response = {'description': note[:255], 'detailed_notes': note}
        return self._change_status(
            query_id, actor_id, ResolutionStatus.RESOLUTION_PROPOSED, response=response,
        )

    def close(self, query_id, actor_id, note=None):
        response = None
        if note:
            response = {'description': note[:255], 'detailed_notes': note}
        return self._change_status(
            query_id, actor_id, ResolutionStatus.CLOSED, response=response, reason=note or '',
        )

    def reopen(self, query_id, actor_id, reason):
        """Reopen a closed query; the reason is audited and appended to the thread."""
        if not reason or not reason.strip():
            return QueryActionResult(
                False, 'A reason is required to reopen a query', query_id=query_id
            )
        return self._change_status(
            query_id, actor_id, ResolutionStatus.NEW,
            response={'description': reason[:255], 'detailed_notes': reason},
            reason=reason,
        )

    def update_status(self, query_id, actor_id, new_status, reason=''):
        """
        Generic transition through the allowed status table.

        Moving to new is a reopen: the closed check happens under the row
        lock and the reason rules of reopen apply.
        """
        target = _validate_status(new_status)
        if target == ResolutionStatus.NEW:
            return self.reopen(query_id, actor_id, reason)
        return self._change_status(query_id, actor_id, target, reason=reason or '')

    def reassign(self, query_id, assigned_user_id, actor_id):
        with transaction.atomic():
            query, failure = self._load_root(query_id)
            if failure:
                return failure

            old_assignee = query.assigned_user_id
            if old_assignee == assigned_user_id:
                return QueryActionResult(
                    False,
                    f"Query {query_id} is already assigned to user {assigned_user_id}",
                    query_id=query_id,
                )

            updated = DiscrepancyNote.objects.filter(
                note_id=query_id,
                assigned_user_id=old_assignee,
            ).update(
                assigned_user_id=assigned_user_id,
                updated_by=actor_id,
                updated_at=timezone.now(),
            )
            if updated == 0:
                return QueryActionResult(
                    False, f"Query {query_id} was modified by another transaction",
                    query_id=query_id,
                )

            self.audit.record(
                actor_id=actor_id,
                entity_type=ENTITY_TYPE,
                entity_id=query_id,
                action=AuditAction.QUERY_REASSIGNED,
                old_value={'assigned_user_id': old_assignee},
                new_value={'assigned_user_id': assigned_user_id},
            )

            self._notify(
                [assigned_user_id], actor_id, NotificationType.QUERY_ASSIGNED,
                'Query assigned',
                f"Query {query_id} has been assigned to you",
                query, query.crf_instance.study_id,
            )

        logger.info("Query %s reassigned from %s to %s", query_id, old_assignee, assigned_user_id)
        return QueryActionResult(True, 'Query reassigned', query_id=query_id)

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def bulk_close(self, query_ids, actor_id, reason=''):
        return self._run_bulk(query_ids, lambda qid: self.close(qid, actor_id, reason or None))

    def bulk_update_status(self, query_ids, new_status, actor_id, reason=''):
        _validate_status(new_status)
        return self._run_bulk(
            query_ids, lambda qid: self.update_status(qid, actor_id, new_status, reason)
        )

    def _run_bulk(self, query_ids, operation):
        batch = BatchResult()
        for query_id in query_ids:
            try:
                result = operation(query_id)
            except DatabaseError as exc:
                logger.exception("Bulk query operation failed for query %s", query_id)
                batch.add_failure(query_id, f"Query {query_id}: {exc}")
                continue

            if result.success:
                batch.add_success(query_id, result)
            else:
                batch.add_failure(query_id, f"Query {query_id}: {result.message}", result)

        logger.info(
            "Bulk query operation: %d succeeded, %d failed",
            batch.succeeded_count, batch.failed_count
        )
        return batch

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_query_thread(self, query_id):
        return QueryThread(query_id)

    def count_by_status(self, study_id):
        counts = {value: 0 for value in ResolutionStatus.values}
        rows = (
            DiscrepancyNote.objects.roots().for_study(study_id)
            .values('resolution_status')
            .annotate(count=Count('note_id'))
        )
        for row in rows:
            counts[row['resolution_status']] = row['count']
        return counts

    def count_by_type(self, study_id):
        counts = {value: 0 for value in NoteType.values}
        rows = (
            DiscrepancyNote.objects.roots().for_study(study_id)
            .values('note_type')
            .annotate(count=Count('note_id'))
        )
        for row in rows:
            counts[row['note_type']] = row['count']
        return counts

    def form_queries(self, crf_instance_id):
        return list(
            DiscrepancyNote.objects.roots().for_crf(crf_instance_id)
            .order_by('created_at', 'note_id')
        )

    def overdue_queries(self, study_id, days_threshold=7):
        """Open root queries raised more than days_threshold days ago."""
        cutoff = timezone.now() - timedelta(days=days_threshold)
        return list(
            DiscrepancyNote.objects.open_queries().for_study(study_id)
            .filter(created_at__lt=cutoff)
            .order_by('created_at', 'note_id')
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_root(self, query_id):
        query = (
            DiscrepancyNote.objects.select_for_update(of=('self',))
            .select_related('crf_instance__study_event__subject')
            .filter(note_id=query_id)
            .first()
        )
        if query is None:
            return None, QueryActionResult(
                False, f"Query {query_id} not found", query_id=query_id, not_found=True
            )
        if not query.is_root:
            return None, QueryActionResult(
                False,
                f"Note {query_id} is a response to query {query.parent_id}, not a query",
                query_id=query_id,
            )
        return query, None

    def _lock_crf_for_reopen(self, query_id):
        """
        Row-lock the CRF a query belongs to before the query itself.

        Same order as create_query, so a reopen and a concurrent lock of the
        form serialize instead of leaving an open query on a locked CRF.
        """
        crf_instance_id = (
            DiscrepancyNote.objects.filter(note_id=query_id)
            .values_list('crf_instance_id', flat=True)
            .first()
        )
        if crf_instance_id is None:
            return None

        crf = CRFInstance.objects.select_for_update().get(crf_instance_id=crf_instance_id)
        if crf.is_removed:
            return QueryActionResult(
                False, f"Cannot reopen a query on removed CRF {crf_instance_id}", query_id=query_id
            )
        if crf.is_locked:
            return QueryActionResult(
                False, f"Cannot reopen a query on locked CRF {crf_instance_id}", query_id=query_id
            )
        return None

    def _change_status(self, query_id, actor_id, target, response=None, reason='',
                       allow_same=False, action=None):
        with transaction.atomic():
            if target == ResolutionStatus.NEW:
                failure = self._lock_crf_for_reopen(query_id)
                if failure:
                    return failure

            query, failure = self._load_root(query_id)
            if failure:
                return failure

            current = query.resolution_status
            rejection = self._reject_transition(query_id, current, target, allow_same)
            if rejection:
                return rejection

            now = timezone.now()
            changes = {
                'resolution_status': target,
                'updated_by': actor_id,
                'updated_at': now,
            }
            if target == ResolutionStatus.CLOSED:
                changes.update(closed_by=actor_id, closed_at=now)
            elif current == ResolutionStatus.CLOSED:
                changes.update(closed_by=None, closed_at=None)

            updated = DiscrepancyNote.objects.filter(
                note_id=query_id,
                resolution_status=current,
            ).update(**changes)
            if updated == 0:
                return QueryActionResult(
                    False, f"Query {query_id} was modified by another transaction",
                    query_id=query_id,
                )

            response_id = None
            if response:
                response_id = DiscrepancyNote.objects.create(
                    crf_instance_id=query.crf_instance_id,
                    item_name=query.item_name,
                    parent=query,
                    note_type=query.note_type,
                    resolution_status=target,
                    description=response['description'],
                    detailed_notes=response.get('detailed_notes') or '',
                    owner_id=actor_id,
                    updated_by=actor_id,
                ).note_id

            action = action or self._action_for(current, target)
            new_value = {'resolution_status': target}
            if response_id is not None:
                new_value['response_id'] = response_id
            self.audit.record(
                actor_id=actor_id,
                entity_type=ENTITY_TYPE,
                entity_id=query_id,
                action=action,
                old_value={'resolution_status': current},
                new_value=new_value,
                reason=reason,
            )

            self._notify_status_change(query, actor_id, action, target)

        logger.info(
            "Query %s moved from %s to %s by user %s", query_id, current, target, actor_id
        )
        return QueryActionResult(
            True, self._success_message(action), query_id=query_id, response_id=response_id
        )

    def _reject_transition(self, query_id, current, target, allow_same):
        if current == target and allow_same:
            return None
        if current == ResolutionStatus.CLOSED and target != ResolutionStatus.NEW:
            return QueryActionResult(False, f"Query {query_id} is already closed", query_id=query_id)
        if target == ResolutionStatus.NEW and current != ResolutionStatus.CLOSED:
            return QueryActionResult(False, f"Query {query_id} is not closed", query_id=query_id)
        if current == target:
            return QueryActionResult(
                False, f"Query {query_id} is already {current}", query_id=query_id
            )
        if not can_transition(current, target):
            return QueryActionResult(
                False,
                f"Cannot change query {query_id} from {current} to {target}",
                query_id=query_id,
            )
        return None

    @staticmethod
    def _action_for(current, target):
        if target == ResolutionStatus.CLOSED:
            return AuditAction.QUERY_CLOSED
        if target == ResolutionStatus.NEW and current == ResolutionStatus.CLOSED:
            return AuditAction.QUERY_REOPENED
        if target == ResolutionStatus.RESOLUTION_PROPOSED:
            return AuditAction.QUERY_RESOLUTION_PROPOSED
        return AuditAction.QUERY_STATUS_CHANGED

    @staticmethod
    def _success_message(action):
        return {
            AuditAction.QUERY_RESPONSE: 'Response added',
            AuditAction.QUERY_CLOSED: 'Query closed',
            AuditAction.QUERY_REOPENED: 'Query reopened',
            AuditAction.QUERY_RESOLUTION_PROPOSED: 'Resolution proposed',
        }.get(action, 'Query status changed')

    def _notify_status_change(self, query, actor_id, action, target):
        study_id = query.crf_instance.study_id
        if action == AuditAction.QUERY_CLOSED:
            self._notify(
                [query.owner_id, query.assigned_user_id], actor_id,
                NotificationType.QUERY_CLOSED, 'Query closed',
                f"Query {query.note_id} has been closed", query, study_id,
            )
        elif action == AuditAction.QUERY_REOPENED:
            self._notify(
                [query.assigned_user_id], actor_id,
                NotificationType.QUERY_REOPENED, 'Query reopened',
                f"Query {query.note_id} has been reopened", query, study_id,
            )
        else:
            self._notify(
                [query.owner_id], actor_id,
                NotificationType.QUERY_RESPONSE, 'Query updated',
                f"Query {query.note_id} is now {ResolutionStatus(target).label}",
                query, study_id,
            )

    def _notify(self, user_ids, actor_id, notification_type, title, message, query, study_id):
        recipients = [user_id for user_id in user_ids if user_id is not None and user_id != actor_id]
        if not recipients:
            return
        self.notifier.dispatch_on_commit(
            recipients, notification_type, title, message,
            entity_type=ENTITY_TYPE,
            entity_id=query.note_id,
            study_id=study_id,
        )
