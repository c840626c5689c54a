import pytest

from apps.core.models import CRFStatus, CompletionPhase
from apps.queries.models import NoteType, ResolutionStatus
from apps.workflow.eligibility import check_eligibility

from .conftest import make_crf, open_query


def test_crf_scope_reports_every_lock_blocker(scenario):
    report = check_eligibility('crf', 100)

    assert report.can_proceed is False
    assert report.reasons == [
        '2 open queries must be resolved before locking',
        'SDV is required but not yet completed',
    ]
    assert report.open_query_count == 2
    assert report.pending_sdv_count == 1
    assert report.total_forms == 1
    assert report.completed_forms == 1
    assert report.incomplete_form_count == 0


def test_crf_scope_eligible(scenario):
    report = check_eligibility('crf', 102)

    assert report.can_proceed is True
    assert report.reasons == []


def test_crf_scope_singular_reason(scenario):
    report = check_eligibility('crf', 101)

    assert report.reasons == ['1 open query must be resolved before locking']


def test_crf_scope_incomplete_data_entry(scenario, forms):
    make_crf(
        scenario.event, forms.dm, 103,
        status=CRFStatus.AVAILABLE, completion_phase=CompletionPhase.DATA_ENTRY,
    )

    report = check_eligibility('crf', 103)

    assert report.can_proceed is False
    assert report.reasons == ['Data entry is not complete']
    assert report.completed_forms == 0
    assert report.incomplete_form_count == 1


@pytest.mark.parametrize('scope, label', [
    ('crf', 'CRF'),
    ('subject', 'Subject'),
    ('event', 'Event'),
])
def test_missing_entity_is_reported_not_raised(db, scope, label):
    report = check_eligibility(scope, 999)

    assert report.can_proceed is False
    assert report.reasons == [f'{label} 999 not found']


def test_unknown_scope_raises(db):
    with pytest.raises(ValueError):
        check_eligibility('study', 1)


def test_subject_scope_aggregates_forms(scenario):
    report = check_eligibility('subject', scenario.subject.subject_id)

    assert report.can_proceed is False
    assert report.total_forms == 3
    assert report.completed_forms == 3
    assert report.open_query_count == 3
    assert report.pending_sdv_count == 1
    assert report.reasons == [
        '3 open queries must be resolved',
        '1 form pending SDV',
    ]


def test_event_scope_counts_incomplete_and_skips_removed(scenario, forms):
    make_crf(scenario.event, forms.dm, 103, status=CRFStatus.AVAILABLE,
             completion_phase=CompletionPhase.DATA_ENTRY)
    make_crf(scenario.event, forms.dm, 104, status=CRFStatus.AVAILABLE,
             completion_phase=CompletionPhase.DATA_ENTRY)
    removed = make_crf(scenario.event, forms.ae, 105, status=CRFStatus.REMOVED)
    open_query(removed, 'Ignored because the form was removed')

    report = check_eligibility('event', scenario.event.study_event_id)

    assert report.total_forms == 5
    assert report.incomplete_form_count == 2
    assert report.open_query_count == 3
    assert '2 forms not completed' in report.reasons


def test_completion_phase_alone_does_not_complete_aggregate_forms(scenario, forms):
    make_crf(scenario.event, forms.dm, 103, status=CRFStatus.AVAILABLE,
             completion_phase=CompletionPhase.DATA_ENTRY_COMPLETE)

    report = check_eligibility('event', scenario.event.study_event_id)

    assert report.incomplete_form_count == 1
    assert '1 form not completed' in report.reasons


def test_only_open_root_queries_block(scenario):
    crf = scenario.crf102
    root = open_query(crf, 'Closed already', resolution_status=ResolutionStatus.CLOSED)
    open_query(crf, 'A response', parent=root)
    open_query(crf, 'Annotation only', note_type=NoteType.ANNOTATION)

    report = check_eligibility('crf', 102)

    assert report.can_proceed is True
    assert report.open_query_count == 0


def test_subject_ready_after_queries_closed_and_sdv(scenario, workflow, engine):
    for query in [*scenario.queries100, scenario.query101]:
        assert workflow.close(query.note_id, actor_id=9).success
    assert engine.mark_sdv(100, actor_id=9).success

    report = check_eligibility('subject', scenario.subject.subject_id)

    assert report.can_proceed is True
    assert report.reasons == []


def test_lock_succeeds_iff_crf_eligible(scenario, engine):
    for crf_instance_id in (100, 101, 102):
        eligible = check_eligibility('crf', crf_instance_id).can_proceed
        assert engine.lock(crf_instance_id, actor_id=9).success is eligible
