"""
Form Lifecycle Engine.

Lock, unlock, freeze, unfreeze, SDV and sign transitions for CRF instances,
plus their batch variants.

Every single-item transition:
1. Opens a transaction and reloads the CRF row with SELECT ... FOR UPDATE
2. Re-evaluates eligibility against the locked row
3. Applies a conditional UPDATE guarded by the prior state it evaluated
4. Records the audit event in the same transaction
5. Registers notifications to run after commit

Batch operations run each id in its own transaction and collect failures.
Subject and event locks gate on the scope eligibility check, then lock the
forms of that scope one by one through the same single-item path.
"""

import logging
from django.db import DatabaseError, transaction
from django.utils import timezone
from apps.audit.models import AuditAction
from apps.audit.services import AuditRecorder
from apps.core.models import CRFInstance, CRFStatus, CompletionPhase, StudyEvent, Subject
from apps.notifications.models import NotificationType
from apps.notifications.services import NotificationDispatcher
from .config import config_for_crf
from .eligibility import (
    check_eligibility, freeze_blockers, lock_blockers, open_query_count, plural,
    sdv_blockers, sign_blockers,
)
from .phases import LifecycleState, derive_phase, split_phases
from .results import BatchResult, Outcome, TransitionResult

logger = logging.getLogger(__name__)

ENTITY_TYPE = 'CRFInstance'

STATE_FIELDS = ('status', 'completion_phase', 'sdv_verified', 'signed', 'frozen')

SCOPE_AUDIT_ACTIONS = {
    'subject': (AuditAction.SUBJECT_LOCKED, AuditAction.SUBJECT_UNLOCKED),
    'event': (AuditAction.EVENT_LOCKED, AuditAction.EVENT_UNLOCKED),
}


class LifecycleEngine:
    """
    Service applying lifecycle transitions to CRF instances.
    """

    def __init__(self, audit=None, notifier=None):
        self.audit = audit or AuditRecorder()
        self.notifier = notifier or NotificationDispatcher()

    # ------------------------------------------------------------------
    # Single-item transitions
    # ------------------------------------------------------------------

    def lock(self, crf_instance_id, actor_id, reason=''):
        """
        Lock a CRF instance. Lock supersedes freeze.

        Returns:
            TransitionResult; ineligible results list every unmet precondition
        """
        now = timezone.now()
        return self._run(
            crf_instance_id, actor_id,
            check=lock_blockers,
            expected=('status', 'frozen'),
            changes={
                'status': CRFStatus.LOCKED,
                'frozen': False,
                'locked_by': actor_id,
                'locked_at': now,
            },
            action=AuditAction.CRF_LOCKED,
            notification=(NotificationType.FORM_LOCKED, 'Form locked', 'locked'),
            reason=reason,
        )

    def unlock(self, crf_instance_id, actor_id, reason=''):
        def require_locked(crf, config, open_queries):
            if not crf.is_locked:
                return Outcome.WRONG_STATE, [f"CRF {crf.crf_instance_id} is not locked"]
            return None, []

        return self._run(
            crf_instance_id, actor_id,
            check=require_locked,
            expected=('status',),
            changes={
                'status': CRFStatus.DATA_COMPLETE,
                'locked_by': None,
                'locked_at': None,
            },
            action=AuditAction.CRF_UNLOCKED,
            notification=(NotificationType.FORM_UNLOCKED, 'Form unlocked', 'unlocked'),
            reason=reason,
        )

    def freeze(self, crf_instance_id, actor_id, reason=''):
        now = timezone.now()
        return self._run(
            crf_instance_id, actor_id,
            check=freeze_blockers,
            expected=('status', 'frozen'),
            changes={
                'frozen': True,
                'frozen_by': actor_id,
                'frozen_at': now,
            },
            action=AuditAction.CRF_FROZEN,
            notification=(NotificationType.FORM_FROZEN, 'Form frozen', 'frozen'),
            reason=reason,
        )

    def unfreeze(self, crf_instance_id, actor_id, reason=''):
        """Unfreeze a CRF instance; a reason is mandatory and audited."""
        def require_frozen_with_reason(crf, config, open_queries):
            if not crf.frozen:
                return Outcome.WRONG_STATE, [f"CRF {crf.crf_instance_id} is not frozen"]
            if not reason or not reason.strip():
                return Outcome.INELIGIBLE, ["A reason is required to unfreeze"]
            return None, []

        return self._run(
            crf_instance_id, actor_id,
            check=require_frozen_with_reason,
            expected=('frozen',),
            changes={
                'frozen': False,
                'frozen_by': None,
                'frozen_at': None,
            },
            action=AuditAction.CRF_UNFROZEN,
            notification=(NotificationType.FORM_UNFROZEN, 'Form unfrozen', 'unfrozen'),
            reason=reason,
        )

    def mark_sdv(self, crf_instance_id, actor_id, reason=''):
        now = timezone.now()
        return self._run(
            crf_instance_id, actor_id,
            check=sdv_blockers,
            expected=('status', 'sdv_verified'),
            changes={
                'sdv_verified': True,
                'sdv_verified_by': actor_id,
                'sdv_verified_at': now,
            },
            action=AuditAction.CRF_SDV_VERIFIED,
            notification=(NotificationType.FORM_SDV_VERIFIED, 'Form SDV verified', 'source data verified'),
            reason=reason,
        )

    def sign(self, crf_instance_id, actor_id, reason=''):
        now = timezone.now()
        return self._run(
            crf_instance_id, actor_id,
            check=sign_blockers,
            expected=('status', 'signed'),
            changes={
                'signed': True,
                'completion_phase': CompletionPhase.SIGNED,
                'signed_by': actor_id,
                'signed_at': now,
            },
            action=AuditAction.CRF_SIGNED,
            notification=(NotificationType.FORM_SIGNED, 'Form signed', 'signed'),
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Batch transitions
    # ------------------------------------------------------------------

    def batch_lock(self, crf_instance_ids, actor_id):
        return self._run_batch(crf_instance_ids, actor_id, self.lock)

    def batch_unlock(self, crf_instance_ids, actor_id):
        return self._run_batch(crf_instance_ids, actor_id, self.unlock)

    def batch_freeze(self, crf_instance_ids, actor_id):
        return self._run_batch(crf_instance_ids, actor_id, self.freeze)

    def batch_sdv(self, crf_instance_ids, actor_id):
        return self._run_batch(crf_instance_ids, actor_id, self.mark_sdv)

    def _run_batch(self, crf_instance_ids, actor_id, operation, reason=''):
        batch = BatchResult()
        for crf_instance_id in crf_instance_ids:
            try:
                result = operation(crf_instance_id, actor_id, reason=reason)
            except DatabaseError as exc:
                logger.exception("Batch %s failed for CRF %s", operation.__name__, crf_instance_id)
                batch.add_failure(crf_instance_id, f"CRF {crf_instance_id}: {exc}")
                continue

            if result.success:
                batch.add_success(crf_instance_id, result)
            else:
                batch.add_failure(
                    crf_instance_id,
                    f"CRF {crf_instance_id}: {'; '.join(result.reasons)}",
                    result,
                )

        logger.info(
            "Batch %s by user %s: %d succeeded, %d failed",
            operation.__name__, actor_id, batch.succeeded_count, batch.failed_count
        )
        return batch

    # ------------------------------------------------------------------
    # Subject and event scope
    # ------------------------------------------------------------------

    def lock_subject(self, subject_id, actor_id, reason):
        """
        Lock every active, unlocked form of a subject.

        The subject must pass the subject-scope eligibility check. Each form
        is then locked in its own transaction through lock(), so a form that
        changed in the meantime is reported in the batch rather than forced.

        Returns:
            TransitionResult; data carries locked_count and the per-form batch
        """
        return self._apply_to_scope('subject', subject_id, actor_id, reason, locking=True)

    def lock_event(self, study_event_id, actor_id, reason):
        return self._apply_to_scope('event', study_event_id, actor_id, reason, locking=True)

    def unlock_subject(self, subject_id, actor_id, reason):
        """Unlock every locked form of a subject. No eligibility gate applies."""
        return self._apply_to_scope('subject', subject_id, actor_id, reason, locking=False)

    def unlock_event(self, study_event_id, actor_id, reason):
        return self._apply_to_scope('event', study_event_id, actor_id, reason, locking=False)

    def _apply_to_scope(self, scope, entity_id, actor_id, reason, locking):
        verb = 'lock' if locking else 'unlock'
        if not reason or not reason.strip():
            return TransitionResult.failed(
                Outcome.INELIGIBLE, f"A reason is required to {verb} {scope} data"
            )

        target = self._scope_target(scope, entity_id)
        if target is None:
            label = 'Subject' if scope == 'subject' else 'Event'
            return TransitionResult.failed(Outcome.NOT_FOUND, f"{label} {entity_id} not found")
        entity_type, name = target

        crfs = CRFInstance.objects.active()
        crfs = crfs.for_subject(entity_id) if scope == 'subject' else crfs.for_event(entity_id)
        if locking:
            report = check_eligibility(scope, entity_id)
            if not report.can_proceed:
                logger.info(
                    "%s lock rejected for %s %s: %s",
                    scope, entity_type, entity_id, '; '.join(report.reasons)
                )
                return TransitionResult.failed(
                    Outcome.INELIGIBLE,
                    f"Cannot lock data: {'; '.join(report.reasons)}",
                    report.reasons,
                    eligibility=report.as_dict(),
                )
            crfs = crfs.exclude(status=CRFStatus.LOCKED)
            operation = self.lock
        else:
            crfs = crfs.filter(status=CRFStatus.LOCKED)
            operation = self.unlock

        crf_ids = list(crfs.order_by('crf_instance_id').values_list('crf_instance_id', flat=True))
        batch = self._run_batch(crf_ids, actor_id, operation, reason=reason)
        changed = [crf_id for crf_id, result in batch.results if result is not None and result.success]

        if changed:
            lock_action, unlock_action = SCOPE_AUDIT_ACTIONS[scope]
            self.audit.record(
                actor_id=actor_id,
                entity_type=entity_type,
                entity_id=entity_id,
                action=lock_action if locking else unlock_action,
                new_value={'crf_instance_ids': changed, f'{verb}ed_count': len(changed)},
                reason=reason,
            )

        message = (
            f"{verb.capitalize()}ed {plural(len(changed), 'form', 'forms')} "
            f"for {scope} {name}"
        )
        data = {
            'scope': scope,
            'entity_id': entity_id,
            f'{verb}ed_count': len(changed),
            'batch': batch.as_dict(),
        }
        logger.info("Scope %s by user %s: %s", verb, actor_id, message)
        if not batch.success:
            return TransitionResult.failed(Outcome.CONFLICT, message, batch.errors, **data)
        return TransitionResult.applied(message, **data)

    @staticmethod
    def _scope_target(scope, entity_id):
        """(audit entity type, display name) of a subject or event, or None."""
        if scope == 'subject':
            subject = Subject.objects.filter(subject_id=entity_id).first()
            return ('Subject', subject.label) if subject else None
        event = StudyEvent.objects.filter(study_event_id=entity_id).first()
        return ('StudyEvent', event.event_name) if event else None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def check_eligibility(self, scope, entity_id):
        return check_eligibility(scope, entity_id)

    def get_lifecycle_status(self, crf_instance_id):
        """
        Get the derived lifecycle position of a CRF.

        Returns:
            dict, or None when the CRF does not exist
        """
        crf = (
            CRFInstance.objects
            .select_related('study_event__subject', 'form_definition')
            .filter(crf_instance_id=crf_instance_id)
            .first()
        )
        if crf is None:
            return None

        config = config_for_crf(crf)
        open_queries = open_query_count(crf.crf_instance_id)
        state = LifecycleState.from_crf(crf)
        completed, pending = split_phases(state, config)

        return {
            'crf_instance_id': crf.crf_instance_id,
            'form_name': crf.form_definition.form_name,
            'status': crf.status,
            'completion_phase': crf.completion_phase,
            'sdv_verified': crf.sdv_verified,
            'signed': crf.signed,
            'frozen': crf.frozen,
            'current_phase': derive_phase(state, config).value,
            'completed_phases': [phase.value for phase in completed],
            'pending_phases': [phase.value for phase in pending],
            'available_transitions': self._available_transitions(crf, config, open_queries),
            'workflow_config': config.as_dict(),
            'open_query_count': open_queries,
        }

    @staticmethod
    def _available_transitions(crf, config, open_queries):
        available = []
        if lock_blockers(crf, config, open_queries)[0] is None:
            available.append('lock')
        if crf.is_locked:
            available.append('unlock')
        if freeze_blockers(crf, config, open_queries)[0] is None:
            available.append('freeze')
        if crf.frozen:
            available.append('unfreeze')
        if sdv_blockers(crf, config, open_queries)[0] is None:
            available.append('sdv')
        if sign_blockers(crf, config, open_queries)[0] is None:
            available.append('sign')
        return available

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(self, crf_instance_id, actor_id, check, expected, changes, action,
             notification, reason=''):
        with transaction.atomic():
            crf = (
                CRFInstance.objects.select_for_update(of=('self',))
                .select_related('study_event__subject', 'form_definition')
                .filter(crf_instance_id=crf_instance_id)
                .first()
            )
            if crf is None:
                return TransitionResult.failed(
                    Outcome.NOT_FOUND, f"CRF {crf_instance_id} not found"
                )

            config = config_for_crf(crf)
            outcome, reasons = check(crf, config, open_query_count(crf.crf_instance_id))
            if outcome is not None:
                logger.info(
                    "%s rejected for CRF %s: %s", action, crf_instance_id, '; '.join(reasons)
                )
                return TransitionResult.failed(outcome, reasons[0], reasons)

            prior = {field: getattr(crf, field) for field in expected}
            changes = dict(changes, updated_by=actor_id, updated_at=timezone.now())
            if self._conditional_update(crf_instance_id, prior, changes) == 0:
                return TransitionResult.failed(
                    Outcome.CONFLICT,
                    f"CRF {crf_instance_id} was modified by another transaction",
                )

            old_value = {field: getattr(crf, field) for field in STATE_FIELDS if field in changes}
            new_value = {field: changes[field] for field in STATE_FIELDS if field in changes}
            self.audit.record(
                actor_id=actor_id,
                entity_type=ENTITY_TYPE,
                entity_id=crf_instance_id,
                action=action,
                old_value=old_value,
                new_value=new_value,
                reason=reason or '',
            )

            for field in STATE_FIELDS:
                if field in changes:
                    setattr(crf, field, changes[field])
            self._notify(crf, actor_id, notification)

        logger.info("%s applied to CRF %s by user %s", action, crf_instance_id, actor_id)
        return TransitionResult.applied(
            f"CRF {crf_instance_id} {notification[2]}",
            crf_instance_id=crf_instance_id,
            status=crf.status,
            completion_phase=crf.completion_phase,
            sdv_verified=crf.sdv_verified,
            signed=crf.signed,
            frozen=crf.frozen,
        )

    @staticmethod
    def _conditional_update(crf_instance_id, prior, changes):
        """UPDATE ... WHERE pk = id AND <prior state>; returns affected row count."""
        return CRFInstance.objects.filter(crf_instance_id=crf_instance_id, **prior).update(**changes)

    def _notify(self, crf, actor_id, notification):
        if crf.owner_id is None or crf.owner_id == actor_id:
            return
        notification_type, title, verb = notification
        self.notifier.dispatch_on_commit(
            [crf.owner_id], notification_type, title,
            f"CRF {crf.crf_instance_id} ({crf.form_definition.form_name}) has been {verb}",
            entity_type=ENTITY_TYPE,
            entity_id=crf.crf_instance_id,
            study_id=crf.study_id,
        )