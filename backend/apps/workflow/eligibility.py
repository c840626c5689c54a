"""
Eligibility Evaluator.

Read-only checks answering "can this subject / event / CRF progress?".
The per-CRF blocker functions are shared with the lifecycle engine, which
re-runs them inside its transaction before applying a change.
"""

from dataclasses import dataclass, field
from apps.core.models import (
    CRFInstance, CompletionPhase, COMPLETE_STATUSES, StudyEvent, Subject,
)
from apps.queries.models import DiscrepancyNote
from .config import config_for_crf, get_form_workflow_config
from .results import Outcome

SCOPES = ('subject', 'event', 'crf')

DDE_PENDING = "Double data entry verification is required but not yet completed"


@dataclass
class EligibilityReport:
    scope: str
    entity_id: int
    can_proceed: bool = False
    reasons: list = field(default_factory=list)
    open_query_count: int = 0
    incomplete_form_count: int = 0
    total_forms: int = 0
    completed_forms: int = 0
    pending_sdv_count: int = 0

    def as_dict(self):
        return {
            'scope': self.scope,
            'entity_id': self.entity_id,
            'can_proceed': self.can_proceed,
            'reasons': list(self.reasons),
            'open_query_count': self.open_query_count,
            'incomplete_form_count': self.incomplete_form_count,
            'total_forms': self.total_forms,
            'completed_forms': self.completed_forms,
            'pending_sdv_count': self.pending_sdv_count,
        }


def plural(count, singular, plural_form):
    return f"{count} {singular if count == 1 else plural_form}"


def open_query_count(crf_instance_id):
    return DiscrepancyNote.objects.open_queries().for_crf(crf_instance_id).count()


def _dde_pending(crf, config):
    return config.requires_dde and crf.completion_phase < CompletionPhase.DDE_VERIFIED


def _sdv_pending(crf, config):
    return config.requires_sdv and not crf.sdv_verified


def _signature_pending(crf, config):
    return (
        config.requires_signature
        and not crf.signed
        and crf.completion_phase < CompletionPhase.SIGNED
    )


# ----------------------------------------------------------------------
# Per-CRF blockers: each returns (Outcome or None, reasons)
# ----------------------------------------------------------------------

def lock_blockers(crf, config, open_queries):
    crf_id = crf.crf_instance_id
    if crf.is_removed:
        return Outcome.WRONG_STATE, [f"CRF {crf_id} has been removed"]
    if crf.is_locked:
        return Outcome.WRONG_STATE, [f"CRF {crf_id} is already locked"]

    reasons = []
    if not crf.is_data_complete:
        reasons.append("Data entry is not complete")
    if open_queries:
        reasons.append(
            f"{plural(open_queries, 'open query', 'open queries')} must be resolved before locking"
        )
    if _dde_pending(crf, config):
        reasons.append(DDE_PENDING)
    if _sdv_pending(crf, config):
        reasons.append("SDV is required but not yet completed")
    if _signature_pending(crf, config):
        reasons.append("Signature is required but not yet applied")
    return (Outcome.INELIGIBLE if reasons else None), reasons


def freeze_blockers(crf, config, open_queries):
    crf_id = crf.crf_instance_id
    if crf.is_removed:
        return Outcome.WRONG_STATE, [f"CRF {crf_id} has been removed"]
    if crf.is_locked:
        return Outcome.WRONG_STATE, [f"CRF {crf_id} is locked"]
    if crf.frozen:
        return Outcome.WRONG_STATE, [f"CRF {crf_id} is already frozen"]

    reasons = []
    if not crf.is_data_complete:
        reasons.append("Data entry is not complete")
    if open_queries:
        reasons.append(
            f"{plural(open_queries, 'open query', 'open queries')} must be resolved before freezing"
        )
    return (Outcome.INELIGIBLE if reasons else None), reasons


def sdv_blockers(crf, config, open_queries):
    crf_id = crf.crf_instance_id
    if crf.is_removed:
        return Outcome.WRONG_STATE, [f"CRF {crf_id} has been removed"]
    if crf.is_locked:
        return Outcome.WRONG_STATE, [f"CRF {crf_id} is locked"]
    if crf.sdv_verified:
        return Outcome.WRONG_STATE, [f"CRF {crf_id} is already SDV verified"]

    reasons = []
    if not crf.is_data_complete:
        reasons.append("Data entry is not complete")
    if _dde_pending(crf, config):
        reasons.append(DDE_PENDING)
    return (Outcome.INELIGIBLE if reasons else None), reasons


def sign_blockers(crf, config, open_queries):
    crf_id = crf.crf_instance_id
    if crf.is_removed:
        return Outcome.WRONG_STATE, [f"CRF {crf_id} has been removed"]
    if crf.is_locked:
        return Outcome.WRONG_STATE, [f"CRF {crf_id} is locked"]
    if crf.signed:
        return Outcome.WRONG_STATE, [f"CRF {crf_id} is already signed"]

    reasons = []
    if not crf.is_data_complete:
        reasons.append("Data entry is not complete")
    if open_queries:
        reasons.append(
            f"{plural(open_queries, 'open query', 'open queries')} must be resolved before signing"
        )
    if _dde_pending(crf, config):
        reasons.append(DDE_PENDING)
    if _sdv_pending(crf, config):
        reasons.append("SDV is required but not yet completed")
    return (Outcome.INELIGIBLE if reasons else None), reasons


# ----------------------------------------------------------------------
# Scope evaluation
# ----------------------------------------------------------------------

def check_eligibility(scope, entity_id):
    """
    Check whether a subject, study event or CRF can progress.

    Args:
        scope: 'subject', 'event' or 'crf'
        entity_id: Primary key of the entity in that scope

    Returns:
        EligibilityReport (a missing entity yields can_proceed=False)

    Raises:
        ValueError: for an unknown scope
    """
    if scope not in SCOPES:
        raise ValueError(f"Unknown eligibility scope: {scope!r}")

    if scope == 'crf':
        return evaluate_crf(entity_id)

    if scope == 'subject':
        if not Subject.objects.filter(subject_id=entity_id).exists():
            return _not_found(scope, entity_id, 'Subject')
        crfs = CRFInstance.objects.active().for_subject(entity_id)
    else:
        if not StudyEvent.objects.filter(study_event_id=entity_id).exists():
            return _not_found(scope, entity_id, 'Event')
        crfs = CRFInstance.objects.active().for_event(entity_id)

    return _evaluate_aggregate(scope, entity_id, crfs)


def evaluate_crf(crf_instance_id):
    """CRF-scope report: exactly the lock preconditions."""
    crf = (
        CRFInstance.objects
        .select_related('study_event__subject')
        .filter(crf_instance_id=crf_instance_id)
        .first()
    )
    if crf is None:
        return _not_found('crf', crf_instance_id, 'CRF')

    config = config_for_crf(crf)
    open_queries = open_query_count(crf.crf_instance_id)
    _, reasons = lock_blockers(crf, config, open_queries)
    completed = 1 if crf.is_data_complete else 0

    return EligibilityReport(
        scope='crf',
        entity_id=crf_instance_id,
        can_proceed=not reasons,
        reasons=reasons,
        open_query_count=open_queries,
        incomplete_form_count=1 - completed,
        total_forms=1,
        completed_forms=completed,
        pending_sdv_count=1 if _sdv_pending(crf, config) else 0,
    )


def _evaluate_aggregate(scope, entity_id, crfs):
    crfs = list(crfs.select_related('study_event__subject'))

    total = len(crfs)
    completed = sum(1 for crf in crfs if crf.status in COMPLETE_STATUSES)

    open_queries = (
        DiscrepancyNote.objects.open_queries()
        .filter(crf_instance_id__in=[crf.crf_instance_id for crf in crfs])
        .count()
    ) if crfs else 0

    configs = {}
    pending_sdv = 0
    for crf in crfs:
        key = (crf.form_definition_id, crf.study_id)
        if key not in configs:
            configs[key] = get_form_workflow_config(*key)
        if _sdv_pending(crf, configs[key]):
            pending_sdv += 1

    incomplete = total - completed
    reasons = []
    if open_queries:
        reasons.append(f"{plural(open_queries, 'open query', 'open queries')} must be resolved")
    if incomplete:
        reasons.append(f"{plural(incomplete, 'form', 'forms')} not completed")
    if pending_sdv:
        reasons.append(f"{plural(pending_sdv, 'form', 'forms')} pending SDV")

    return EligibilityReport(
        scope=scope,
        entity_id=entity_id,
        can_proceed=not reasons,
        reasons=reasons,
        open_query_count=open_queries,
        incomplete_form_count=incomplete,
        total_forms=total,
        completed_forms=completed,
        pending_sdv_count=pending_sdv,
    )


def _not_found(scope, entity_id, label):
    return EligibilityReport(
        scope=scope,
        entity_id=entity_id,
        can_proceed=False,
        reasons=[f"{label} {entity_id} not found"],
    )
