from datetime import timedelta

import pytest
from django.utils import timezone

from apps.audit.models import AuditAction, AuditEvent
from apps.core.models import CRFInstance, CRFStatus
from apps.workflow.models import FormWorkflowConfig
from apps.workflow.results import Outcome
from apps.workflow.worklists import get_locked_records, get_pending_signatures, get_sdv_worklist

from .conftest import ACTOR, make_crf


def statuses():
    return dict(CRFInstance.objects.values_list('crf_instance_id', 'status'))


@pytest.fixture
def ready(scenario, engine, workflow):
    """Scenario with every query closed and CRF 100 source verified."""
    for query in [*scenario.queries100, scenario.query101]:
        assert workflow.close(query.note_id, ACTOR).success
    assert engine.mark_sdv(100, ACTOR).success
    return scenario


# Subject and event locks

def test_subject_lock_blocked_by_scope_eligibility(scenario, engine):
    result = engine.lock_subject(scenario.subject.subject_id, ACTOR, 'Database lock')

    assert result.success is False
    assert result.outcome == Outcome.INELIGIBLE
    assert result.message == 'Cannot lock data: 3 open queries must be resolved; 1 form pending SDV'
    assert result.data['eligibility']['open_query_count'] == 3
    assert CRFStatus.LOCKED not in statuses().values()


def test_subject_lock_locks_every_form(ready, engine):
    subject_id = ready.subject.subject_id

    result = engine.lock_subject(subject_id, ACTOR, 'Database lock')

    assert result.success is True
    assert result.message == 'Locked 3 forms for subject 001-001'
    assert result.data['locked_count'] == 3
    assert set(statuses().values()) == {CRFStatus.LOCKED}

    scope_event = AuditEvent.objects.for_entity('Subject', subject_id).get()
    assert scope_event.action == AuditAction.SUBJECT_LOCKED
    assert scope_event.new_value == {'crf_instance_ids': [100, 101, 102], 'locked_count': 3}
    assert scope_event.reason == 'Database lock'
    crf_event = AuditEvent.objects.for_entity('CRFInstance', 101).get(action=AuditAction.CRF_LOCKED)
    assert crf_event.reason == 'Database lock'


def test_subject_lock_requires_reason(ready, engine):
    result = engine.lock_subject(ready.subject.subject_id, ACTOR, '  ')

    assert result.outcome == Outcome.INELIGIBLE
    assert result.message == 'A reason is required to lock subject data'
    assert CRFStatus.LOCKED not in statuses().values()


def test_missing_subject_and_event(db, engine):
    assert engine.lock_subject(999, ACTOR, 'Database lock').message == 'Subject 999 not found'
    assert engine.unlock_event(999, ACTOR, 'Correction').outcome == Outcome.NOT_FOUND


def test_event_lock_skips_locked_and_removed_forms(ready, engine, forms):
    make_crf(ready.event, forms.dm, 103, status=CRFStatus.REMOVED)
    assert engine.lock(102, ACTOR).success

    result = engine.lock_event(ready.event.study_event_id, ACTOR, 'Visit closed')

    assert result.success is True
    assert result.message == 'Locked 2 forms for event Baseline'
    assert result.data['batch']['succeeded_count'] == 2
    assert statuses()[103] == CRFStatus.REMOVED
    event_audit = AuditEvent.objects.for_entity('StudyEvent', ready.event.study_event_id).get()
    assert event_audit.action == AuditAction.EVENT_LOCKED
    assert event_audit.new_value['crf_instance_ids'] == [100, 101]


def test_subject_unlock_reopens_every_locked_form(ready, engine):
    subject_id = ready.subject.subject_id
    engine.lock_subject(subject_id, ACTOR, 'Database lock')

    result = engine.unlock_subject(subject_id, ACTOR, 'Late correction')

    assert result.success is True
    assert result.message == 'Unlocked 3 forms for subject 001-001'
    assert result.data['unlocked_count'] == 3
    assert set(statuses().values()) == {CRFStatus.DATA_COMPLETE}
    assert AuditEvent.objects.for_entity('Subject', subject_id).filter(
        action=AuditAction.SUBJECT_UNLOCKED
    ).exists()


def test_unlock_with_nothing_locked_changes_nothing(scenario, engine):
    result = engine.unlock_event(scenario.event.study_event_id, ACTOR, 'Correction')

    assert result.success is True
    assert result.data['unlocked_count'] == 0
    assert not AuditEvent.objects.exists()


def test_unlock_requires_reason(ready, engine):
    engine.lock_subject(ready.subject.subject_id, ACTOR, 'Database lock')

    result = engine.unlock_subject(ready.subject.subject_id, ACTOR, '')

    assert result.message == 'A reason is required to unlock subject data'
    assert set(statuses().values()) == {CRFStatus.LOCKED}


# Worklists

def test_locked_records_newest_first_and_paged(ready, engine):
    engine.batch_lock([101, 102], ACTOR)
    now = timezone.now()
    CRFInstance.objects.filter(pk=101).update(locked_at=now - timedelta(hours=1))
    CRFInstance.objects.filter(pk=102).update(locked_at=now)

    first_page = get_locked_records(study_id='STUDY-01', limit=1)

    assert first_page['pagination'] == {'page': 1, 'limit': 1, 'total': 2}
    assert [row['crf_instance_id'] for row in first_page['data']] == [102]
    assert first_page['data'][0]['locked_by'] == ACTOR
    assert first_page['data'][0]['subject_label'] == '001-001'

    second_page = get_locked_records(subject_id=ready.subject.subject_id, page=2, limit=1)
    assert [row['crf_instance_id'] for row in second_page['data']] == [101]

    assert get_locked_records(page=3, limit=1)['data'] == []
    assert get_locked_records(study_id='OTHER')['pagination']['total'] == 0


def test_sdv_worklist_by_status(scenario, engine):
    pending = get_sdv_worklist(status='pending')

    assert [row['crf_instance_id'] for row in pending['data']] == [100]
    assert pending['data'][0]['requires_sdv'] is True

    engine.mark_sdv(100, ACTOR)

    assert get_sdv_worklist(status='pending')['data'] == []
    verified = get_sdv_worklist(study_id='STUDY-01', status='verified')
    assert [row['crf_instance_id'] for row in verified['data']] == [100]
    assert verified['data'][0]['sdv_verified_by'] == ACTOR
    assert get_sdv_worklist()['pagination']['total'] == 3


def test_sdv_worklist_rejects_unknown_status(db):
    with pytest.raises(ValueError):
        get_sdv_worklist(status='skipped')


def test_pending_signatures(scenario, engine, forms):
    FormWorkflowConfig.objects.create(form_definition=forms.dm, requires_signature=True)

    pending = get_pending_signatures(study_id='STUDY-01')

    assert pending['total_pending'] == 1
    assert [row['crf_instance_id'] for row in pending['data']] == [102]

    assert engine.sign(102, ACTOR).success
    assert get_pending_signatures()['total_pending'] == 0
