from datetime import timedelta

import pytest
from django.utils import timezone

from apps.audit.models import AuditAction, AuditEvent
from apps.core.models import CRFInstance, CRFStatus
from apps.queries.models import DiscrepancyNote, NoteType, ResolutionStatus
from apps.queries.services import can_transition
from apps.workflow.eligibility import open_query_count

from .conftest import ACTOR, MONITOR, OWNER, open_query


def query_audit(query_id):
    return AuditEvent.objects.for_entity('DiscrepancyNote', query_id).order_by('audit_id')


def status_of(query_id):
    return DiscrepancyNote.objects.get(pk=query_id).resolution_status


def test_create_query_routes_to_configured_assignee(scenario, workflow):
    result = workflow.create_query(100, ACTOR, 'Temperature unit missing', item_name='TEMP')

    assert result.success is True
    query = DiscrepancyNote.objects.get(pk=result.query_id)
    assert query.assigned_user_id == MONITOR
    assert query.owner_id == ACTOR
    assert query.resolution_status == ResolutionStatus.NEW
    assert query.item_name == 'TEMP'
    assert query_audit(query.note_id).get().action == AuditAction.QUERY_CREATED
    assert open_query_count(100) == 3


def test_create_query_without_routing_is_unassigned(scenario, workflow):
    result = workflow.create_query(102, ACTOR, 'Birth date looks wrong')

    assert DiscrepancyNote.objects.get(pk=result.query_id).assigned_user_id is None


def test_explicit_assignee_wins(scenario, workflow):
    result = workflow.create_query(100, ACTOR, 'Check', assigned_user_id=OWNER)

    assert DiscrepancyNote.objects.get(pk=result.query_id).assigned_user_id == OWNER


def test_create_query_on_locked_crf_is_rejected(scenario, engine, workflow):
    engine.lock(102, ACTOR)

    result = workflow.create_query(102, ACTOR, 'Too late')

    assert result.success is False
    assert result.message == 'Cannot raise a query on locked CRF 102'
    assert not DiscrepancyNote.objects.for_crf(102).exists()


def test_create_query_on_removed_crf_is_rejected(scenario, workflow):
    CRFInstance.objects.filter(pk=102).update(status=CRFStatus.REMOVED)

    assert workflow.create_query(102, ACTOR, 'Gone').message == 'Cannot raise a query on removed CRF 102'


def test_create_query_on_missing_crf(db, workflow):
    result = workflow.create_query(999, ACTOR, 'Nothing here')

    assert result.success is False
    assert result.not_found is True


def test_create_query_rejects_unknown_note_type(scenario, workflow):
    with pytest.raises(ValueError):
        workflow.create_query(100, ACTOR, 'Bad', note_type='comment')


def test_respond_defaults_to_updated(scenario, workflow):
    query = scenario.query101

    result = workflow.respond(query.note_id, OWNER, 'Onset date corrected')

    assert result.success is True
    assert result.message == 'Response added'
    assert status_of(query.note_id) == ResolutionStatus.UPDATED
    response = DiscrepancyNote.objects.get(pk=result.response_id)
    assert response.parent_id == query.note_id
    assert response.note_type == NoteType.QUERY
    assert response.owner_id == OWNER
    assert open_query_count(101) == 1


def test_respond_can_propose_resolution(scenario, workflow):
    query = scenario.query101

    workflow.respond(query.note_id, OWNER, 'Fixed', new_status=ResolutionStatus.RESOLUTION_PROPOSED)

    assert status_of(query.note_id) == ResolutionStatus.RESOLUTION_PROPOSED


def test_repeat_responses_keep_status(scenario, workflow):
    query = scenario.query101
    workflow.respond(query.note_id, OWNER, 'First answer')

    result = workflow.respond(query.note_id, OWNER, 'Second answer')

    assert result.success is True
    assert DiscrepancyNote.objects.filter(parent_id=query.note_id).count() == 2


def test_respond_to_closed_query_is_rejected(scenario, workflow):
    query = scenario.query101
    workflow.close(query.note_id, MONITOR)

    result = workflow.respond(query.note_id, OWNER, 'Late answer')

    assert result.success is False
    assert result.message == f'Query {query.note_id} is already closed'


def test_respond_to_response_is_rejected(scenario, workflow):
    query = scenario.query101
    response_id = workflow.respond(query.note_id, OWNER, 'Answer').response_id

    result = workflow.respond(response_id, OWNER, 'Nested answer')

    assert result.success is False
    assert result.message == (
        f'Note {response_id} is a response to query {query.note_id}, not a query'
    )


def test_respond_rejects_closing_status(scenario, workflow):
    with pytest.raises(ValueError):
        workflow.respond(scenario.query101.note_id, OWNER, 'Done', new_status=ResolutionStatus.CLOSED)


def test_respond_to_missing_query(db, workflow):
    result = workflow.respond(999, OWNER, 'Hello')

    assert result.not_found is True
    assert result.message == 'Query 999 not found'


def test_propose_resolution(scenario, workflow):
    query = scenario.query101

    result = workflow.propose_resolution(query.note_id, OWNER, note='Source document checked')

    assert result.success is True
    assert status_of(query.note_id) == ResolutionStatus.RESOLUTION_PROPOSED
    assert query_audit(query.note_id).last().action == AuditAction.QUERY_RESOLUTION_PROPOSED
    assert result.response_id is not None


def test_close_records_closer_and_unblocks(scenario, workflow):
    query = scenario.query101

    result = workflow.close(query.note_id, MONITOR)

    assert result.success is True
    closed = DiscrepancyNote.objects.get(pk=query.note_id)
    assert closed.resolution_status == ResolutionStatus.CLOSED
    assert closed.closed_by == MONITOR
    assert closed.closed_at is not None
    assert open_query_count(101) == 0
    event = query_audit(query.note_id).last()
    assert event.old_value == {'resolution_status': 'new'}
    assert event.new_value == {'resolution_status': 'closed'}


def test_close_twice_is_rejected(scenario, workflow):
    query = scenario.query101
    workflow.close(query.note_id, MONITOR)
    audit_count = AuditEvent.objects.count()

    result = workflow.close(query.note_id, MONITOR)

    assert result.success is False
    assert result.message == f'Query {query.note_id} is already closed'
    assert AuditEvent.objects.count() == audit_count


def test_reopen_requires_reason(scenario, workflow):
    query = scenario.query101
    workflow.close(query.note_id, MONITOR)

    result = workflow.reopen(query.note_id, MONITOR, reason='')

    assert result.success is False
    assert result.message == 'A reason is required to reopen a query'
    assert status_of(query.note_id) == ResolutionStatus.CLOSED


def test_reopen_returns_query_to_new(scenario, workflow):
    query = scenario.query101
    workflow.close(query.note_id, MONITOR)

    result = workflow.reopen(query.note_id, MONITOR, reason='Source document disagrees')

    assert result.success is True
    reopened = DiscrepancyNote.objects.get(pk=query.note_id)
    assert reopened.resolution_status == ResolutionStatus.NEW
    assert reopened.closed_at is None
    event = query_audit(query.note_id).last()
    assert event.action == AuditAction.QUERY_REOPENED
    assert event.reason == 'Source document disagrees'
    note = DiscrepancyNote.objects.get(pk=result.response_id)
    assert note.detailed_notes == 'Source document disagrees'
    assert open_query_count(101) == 1


def test_reopen_open_query_is_rejected(scenario, workflow):
    query = scenario.query101

    result = workflow.reopen(query.note_id, MONITOR, reason='Why not')

    assert result.message == f'Query {query.note_id} is not closed'


def test_update_status_follows_transition_table(scenario, workflow):
    query = scenario.query101

    assert workflow.update_status(query.note_id, MONITOR, 'updated').success
    assert workflow.update_status(query.note_id, MONITOR, 'resolution_proposed').success
    assert workflow.update_status(query.note_id, MONITOR, 'updated').success
    assert workflow.update_status(query.note_id, MONITOR, 'closed').success
    assert not workflow.update_status(query.note_id, MONITOR, 'updated').success


def test_update_status_to_new_reopens_closed_query(scenario, workflow):
    query = scenario.query101
    workflow.close(query.note_id, MONITOR)

    assert not workflow.update_status(query.note_id, MONITOR, 'new').success
    assert workflow.update_status(query.note_id, MONITOR, 'new', reason='Reopen').success
    assert status_of(query.note_id) == ResolutionStatus.NEW


def test_reopen_rejected_once_form_is_locked(scenario, workflow, engine):
    query = scenario.query101
    workflow.close(query.note_id, MONITOR)
    assert engine.lock(101, ACTOR).success
    audit_count = query_audit(query.note_id).count()

    result = workflow.reopen(query.note_id, MONITOR, reason='Source document disagrees')

    assert result.success is False
    assert result.message == 'Cannot reopen a query on locked CRF 101'
    assert status_of(query.note_id) == ResolutionStatus.CLOSED
    assert open_query_count(101) == 0
    assert query_audit(query.note_id).count() == audit_count
    assert not workflow.update_status(query.note_id, MONITOR, 'new', reason='Reopen').success


def test_reopen_allowed_again_after_unlock(scenario, workflow, engine):
    query = scenario.query101
    workflow.close(query.note_id, MONITOR)
    engine.lock(101, ACTOR)
    engine.unlock(101, ACTOR, reason='Late correction')

    assert workflow.reopen(query.note_id, MONITOR, reason='Source document disagrees').success
    assert open_query_count(101) == 1


def test_update_status_to_new_on_open_query_is_rejected(scenario, workflow):
    query = scenario.query101

    result = workflow.update_status(query.note_id, MONITOR, 'new', reason='Reopen')

    assert result.success is False
    assert result.message == f'Query {query.note_id} is not closed'
    assert status_of(query.note_id) == ResolutionStatus.NEW
    assert not query_audit(query.note_id).exists()


def test_update_status_rejects_unknown_status(scenario, workflow):
    with pytest.raises(ValueError):
        workflow.update_status(scenario.query101.note_id, MONITOR, 'pending')


@pytest.mark.parametrize('current, target, allowed', [
    (ResolutionStatus.NEW, ResolutionStatus.CLOSED, True),
    (ResolutionStatus.UPDATED, ResolutionStatus.NEW, False),
    (ResolutionStatus.RESOLUTION_PROPOSED, ResolutionStatus.UPDATED, True),
    (ResolutionStatus.CLOSED, ResolutionStatus.NEW, True),
    (ResolutionStatus.CLOSED, ResolutionStatus.UPDATED, False),
])
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_reassign(scenario, workflow):
    query = scenario.query101

    result = workflow.reassign(query.note_id, MONITOR, ACTOR)

    assert result.success is True
    assert DiscrepancyNote.objects.get(pk=query.note_id).assigned_user_id == MONITOR
    event = query_audit(query.note_id).last()
    assert event.action == AuditAction.QUERY_REASSIGNED
    assert event.old_value == {'assigned_user_id': OWNER}

    again = workflow.reassign(query.note_id, MONITOR, ACTOR)
    assert again.success is False
    assert again.message == f'Query {query.note_id} is already assigned to user {MONITOR}'


def test_bulk_close_mixed(scenario, workflow):
    closed_first = scenario.queries100[0]
    workflow.close(closed_first.note_id, MONITOR)
    ids = [closed_first.note_id, scenario.queries100[1].note_id, scenario.query101.note_id, 999]

    batch = workflow.bulk_close(ids, MONITOR, reason='Data cleaning sweep')

    assert batch.updated_count == 2
    assert batch.failed_count == 2
    assert batch.errors == [
        f'Query {closed_first.note_id}: Query {closed_first.note_id} is already closed',
        'Query 999: Query 999 not found',
    ]
    assert open_query_count(100) == 0
    assert open_query_count(101) == 0


def test_bulk_update_status(scenario, workflow):
    ids = [query.note_id for query in scenario.queries100]

    batch = workflow.bulk_update_status(ids, 'resolution_proposed', MONITOR)

    assert batch.success is True
    assert {status_of(query_id) for query_id in ids} == {ResolutionStatus.RESOLUTION_PROPOSED}


def test_bulk_update_status_validates_before_running(scenario, workflow):
    with pytest.raises(ValueError):
        workflow.bulk_update_status([scenario.query101.note_id], 'archived', MONITOR)


def test_thread_is_ordered_and_restartable(scenario, workflow):
    query = scenario.query101
    workflow.respond(query.note_id, OWNER, 'First')
    thread = workflow.get_query_thread(query.note_id)

    first_pass = [note.description for note in thread]
    workflow.respond(query.note_id, OWNER, 'Second')
    second_pass = [note.description for note in thread]

    assert first_pass == ['AE onset before consent', 'First']
    assert second_pass == ['AE onset before consent', 'First', 'Second']
    assert thread.exists() is True


def test_thread_for_missing_query_is_empty(db, workflow):
    thread = workflow.get_query_thread(999)

    assert list(thread) == []
    assert thread.exists() is False


def test_count_by_status_and_type(scenario, workflow, study):
    workflow.close(scenario.query101.note_id, MONITOR)
    open_query(scenario.crf102, 'Note only', note_type=NoteType.ANNOTATION)

    by_status = workflow.count_by_status(study.study_id)
    by_type = workflow.count_by_type(study.study_id)

    assert by_status == {'new': 3, 'updated': 0, 'resolution_proposed': 0, 'closed': 1}
    assert by_type['query'] == 3
    assert by_type['annotation'] == 1
    assert by_type['reason_for_change'] == 0


def test_form_queries_lists_roots_only(scenario, workflow):
    workflow.respond(scenario.queries100[0].note_id, OWNER, 'Answer')

    queries = workflow.form_queries(100)

    assert [query.note_id for query in queries] == [query.note_id for query in scenario.queries100]


def test_overdue_queries(scenario, workflow, study):
    stale = scenario.queries100[0]
    DiscrepancyNote.objects.filter(pk=stale.note_id).update(
        created_at=timezone.now() - timedelta(days=10)
    )

    overdue = workflow.overdue_queries(study.study_id, days_threshold=7)

    assert [query.note_id for query in overdue] == [stale.note_id]
    assert workflow.overdue_queries(study.study_id, days_threshold=30) == []
