"""
Monitor and investigator worklists over CRF instances.

Read-only listings: locked records, the SDV queue and forms awaiting a
signature. Paged listings return {'data': [...], 'pagination': {...}};
a page past the end is empty.
"""

from apps.core.models import CRFInstance, CRFStatus
from .config import get_form_workflow_config

SDV_STATUSES = ('pending', 'verified')

DEFAULT_PAGE_SIZE = 20
PENDING_SIGNATURE_LIMIT = 50


def _iso(value):
    return value.isoformat() if value else None


def _crfs(study_id=None, subject_id=None):
    crfs = CRFInstance.objects.select_related('study_event__subject', 'form_definition')
    if study_id is not None:
        crfs = crfs.for_study(study_id)
    if subject_id is not None:
        crfs = crfs.for_subject(subject_id)
    return crfs


def _config_resolver():
    configs = {}

    def resolve(crf):
        key = (crf.form_definition_id, crf.study_id)
        if key not in configs:
            configs[key] = get_form_workflow_config(*key)
        return configs[key]

    return resolve


def _row(crf, **extra):
    subject = crf.study_event.subject
    row = {
        'crf_instance_id': crf.crf_instance_id,
        'study_id': subject.study_id,
        'subject_id': subject.subject_id,
        'subject_label': subject.label,
        'study_event_id': crf.study_event_id,
        'event_name': crf.study_event.event_name,
        'form_name': crf.form_definition.form_name,
        'status': crf.status,
        'frozen': crf.frozen,
    }
    row.update(extra)
    return row


def _paginate(rows, page, limit, render):
    total = len(rows) if isinstance(rows, list) else rows.count()
    start = (page - 1) * limit
    return {
        'data': [render(crf) for crf in rows[start:start + limit]],
        'pagination': {'page': page, 'limit': limit, 'total': total},
    }


def get_locked_records(study_id=None, subject_id=None, page=1, limit=DEFAULT_PAGE_SIZE):
    """
    Locked CRFs, most recently locked first.

    Usage: get_locked_records(study_id='STUDY-01', page=2)
    """
    crfs = (
        _crfs(study_id, subject_id)
        .filter(status=CRFStatus.LOCKED)
        .order_by('-locked_at', '-crf_instance_id')
    )
    return _paginate(
        crfs, page, limit,
        lambda crf: _row(crf, locked_by=crf.locked_by, locked_at=_iso(crf.locked_at)),
    )


def get_sdv_worklist(study_id=None, status=None, page=1, limit=DEFAULT_PAGE_SIZE):
    """
    Source data verification queue.

    Args:
        status: 'pending' lists data-complete, unlocked forms whose
            configuration requires SDV and that are not yet verified;
            'verified' lists verified forms; None lists every active form.

    Raises:
        ValueError: for an unknown status
    """
    if status is not None and status not in SDV_STATUSES:
        raise ValueError(f"Unknown SDV status: {status!r}")

    resolve = _config_resolver()
    crfs = _crfs(study_id).active()

    if status == 'verified':
        rows = crfs.filter(sdv_verified=True).order_by('-sdv_verified_at', '-crf_instance_id')
    elif status == 'pending':
        rows = [
            crf for crf in (
                crfs.filter(sdv_verified=False, status=CRFStatus.DATA_COMPLETE)
                .order_by('crf_instance_id')
            )
            if resolve(crf).requires_sdv
        ]
    else:
        rows = crfs.order_by('crf_instance_id')

    return _paginate(
        rows, page, limit,
        lambda crf: _row(
            crf,
            requires_sdv=resolve(crf).requires_sdv,
            sdv_verified=crf.sdv_verified,
            sdv_verified_by=crf.sdv_verified_by,
            sdv_verified_at=_iso(crf.sdv_verified_at),
        ),
    )


def get_pending_signatures(study_id=None, limit=PENDING_SIGNATURE_LIMIT):
    """
    Data-complete, unlocked forms whose configuration requires a signature
    that has not been applied, most recently updated first.
    """
    resolve = _config_resolver()
    crfs = (
        _crfs(study_id).active()
        .filter(status=CRFStatus.DATA_COMPLETE, signed=False)
        .order_by('-updated_at', '-crf_instance_id')
    )
    pending = [crf for crf in crfs if resolve(crf).requires_signature]

    return {
        'data': [_row(crf, updated_at=_iso(crf.updated_at)) for crf in pending[:limit]],
        'total_pending': len(pending),
    }
