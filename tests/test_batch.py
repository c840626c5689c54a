from unittest import mock

from django.db import DatabaseError

from apps.core.models import CRFInstance, CRFStatus
from apps.workflow.services import LifecycleEngine

from .conftest import ACTOR


def test_batch_lock_reports_per_crf_failure(scenario, engine, workflow):
    for query in scenario.queries100:
        workflow.close(query.note_id, ACTOR)
    engine.mark_sdv(100, ACTOR)

    batch = engine.batch_lock([100, 101, 102], ACTOR)

    assert batch.success is False
    assert batch.succeeded_count == 2
    assert batch.failed_count == 1
    assert batch.errors == ['CRF 101: 1 open query must be resolved before locking']
    statuses = dict(CRFInstance.objects.values_list('crf_instance_id', 'status'))
    assert statuses == {
        100: CRFStatus.LOCKED,
        101: CRFStatus.DATA_COMPLETE,
        102: CRFStatus.LOCKED,
    }


def test_batch_counts_duplicates_and_missing_ids(scenario, engine):
    ids = [102, 102, 999]

    batch = engine.batch_lock(ids, ACTOR)

    assert batch.succeeded_count + batch.failed_count == len(ids)
    assert batch.succeeded_count == 1
    assert batch.errors == [
        'CRF 102: CRF 102 is already locked',
        'CRF 999: CRF 999 not found',
    ]
    assert [entity_id for entity_id, _ in batch.results] == ids


def test_batch_joins_multiple_reasons(scenario, engine):
    batch = engine.batch_lock([100], ACTOR)

    assert batch.errors == [
        'CRF 100: 2 open queries must be resolved before locking; '
        'SDV is required but not yet completed'
    ]


def test_batch_continues_after_database_error(scenario, engine):
    original = LifecycleEngine._conditional_update

    def flaky(crf_instance_id, prior, changes):
        if crf_instance_id == 100:
            raise DatabaseError('deadlock detected')
        return original(crf_instance_id, prior, changes)

    with mock.patch.object(LifecycleEngine, '_conditional_update', side_effect=flaky):
        batch = engine.batch_sdv([100, 102], ACTOR)

    assert batch.succeeded_count == 1
    assert batch.failed_count == 1
    assert batch.errors == ['CRF 100: deadlock detected']
    assert CRFInstance.objects.get(pk=100).sdv_verified is False
    assert CRFInstance.objects.get(pk=102).sdv_verified is True


def test_batch_freeze_and_unlock(scenario, engine):
    freeze = engine.batch_freeze([100, 102], ACTOR)

    assert freeze.succeeded_count == 1
    assert freeze.errors == ['CRF 100: 2 open queries must be resolved before freezing']

    engine.lock(102, ACTOR)
    unlock = engine.batch_unlock([101, 102], ACTOR)

    assert unlock.succeeded_count == 1
    assert unlock.errors == ['CRF 101: CRF 101 is not locked']


def test_batch_result_as_dict(scenario, engine):
    data = engine.batch_sdv([100, 999], ACTOR).as_dict()

    assert data['success'] is False
    assert data['succeeded_count'] == 1
    assert data['updated_count'] == 1
    assert data['failed_count'] == 1
    assert data['results'] == [
        {'id': 100, 'success': True, 'message': 'CRF 100 source data verified'},
        {'id': 999, 'success': False, 'message': 'CRF 999 not found'},
    ]
