from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import connection, transaction

from apps.audit.models import AuditAction, AuditChainHead, AuditEvent, ImmutableAuditError
from apps.audit.services import GENESIS_HASH, AuditRecorder, chain_hash

from .conftest import ACTOR


@pytest.fixture
def recorder():
    return AuditRecorder()


@pytest.fixture
def chain(db, recorder):
    return [
        recorder.record(ACTOR, 'CRFInstance', 100, AuditAction.CRF_SDV_VERIFIED,
                        old_value={'sdv_verified': False}, new_value={'sdv_verified': True}),
        recorder.record(ACTOR, 'CRFInstance', 100, AuditAction.CRF_LOCKED,
                        old_value={'status': 'data_complete'}, new_value={'status': 'locked'},
                        reason='Visit complete'),
        recorder.record(ACTOR, 'DiscrepancyNote', 12, AuditAction.QUERY_CLOSED),
    ]


def test_events_are_chained_from_genesis(chain):
    first, second, third = chain

    assert first.previous_hash == GENESIS_HASH
    assert second.previous_hash == first.event_hash
    assert third.previous_hash == second.event_hash
    assert second.event_hash == chain_hash(second.data_hash, second.previous_hash)


def test_chain_head_follows_newest_event(chain):
    head = AuditChainHead.objects.get()

    assert head.event_hash == chain[-1].event_hash
    assert head.last_audit_id == chain[-1].audit_id


def test_first_event_creates_head_at_genesis(db, recorder):
    event = recorder.record(ACTOR, 'CRFInstance', 102, AuditAction.CRF_FROZEN)

    assert event.previous_hash == GENESIS_HASH
    assert AuditChainHead.objects.get().event_hash == event.event_hash


def test_missing_head_is_rebuilt_from_newest_event(chain, recorder):
    AuditChainHead.objects.all().delete()

    event = recorder.record(ACTOR, 'CRFInstance', 101, AuditAction.CRF_LOCKED)

    assert event.previous_hash == chain[-1].event_hash
    assert AuditChainHead.objects.get().last_audit_id == event.audit_id
    assert recorder.verify_chain_integrity()['is_valid'] is True


def test_rolled_back_event_leaves_head_untouched(chain, recorder):
    with pytest.raises(RuntimeError):
        with transaction.atomic():
            recorder.record(ACTOR, 'CRFInstance', 101, AuditAction.CRF_LOCKED)
            raise RuntimeError('transition failed')

    assert AuditChainHead.objects.get().event_hash == chain[-1].event_hash
    event = recorder.record(ACTOR, 'CRFInstance', 101, AuditAction.CRF_LOCKED)
    assert event.previous_hash == chain[-1].event_hash
    assert recorder.verify_chain_integrity()['is_valid'] is True


def test_intact_chain_verifies(chain, recorder):
    result = recorder.verify_chain_integrity()

    assert result['is_valid'] is True
    assert result['total_events'] == 3
    assert result['broken_links'] == []
    assert result['tampered_events'] == []


def test_stored_event_verifies_after_reload(chain):
    assert all(event.verify_integrity() for event in AuditEvent.objects.all())


def test_save_of_existing_event_is_refused(chain):
    event = AuditEvent.objects.get(pk=chain[0].pk)
    event.reason = 'rewritten'

    with pytest.raises(ImmutableAuditError):
        event.save()


def test_delete_is_refused(chain):
    with pytest.raises(ImmutableAuditError):
        AuditEvent.objects.get(pk=chain[0].pk).delete()
    with pytest.raises(ImmutableAuditError):
        AuditEvent.objects.all().delete()


def test_queryset_update_is_refused(chain):
    with pytest.raises(ImmutableAuditError):
        AuditEvent.objects.filter(pk=chain[0].pk).update(reason='rewritten')


def test_raw_tampering_is_detected(chain, recorder):
    with connection.cursor() as cursor:
        cursor.execute(
            'UPDATE audit_event SET reason = %s WHERE audit_id = %s',
            ['Backdated', chain[1].audit_id],
        )

    result = recorder.verify_chain_integrity()

    assert result['is_valid'] is False
    assert [event['audit_id'] for event in result['tampered_events']] == [chain[1].audit_id]


def test_broken_link_is_detected(chain, recorder):
    with connection.cursor() as cursor:
        cursor.execute(
            'UPDATE audit_event SET previous_hash = %s WHERE audit_id = %s',
            [GENESIS_HASH, chain[2].audit_id],
        )

    result = recorder.verify_chain_integrity()

    assert result['is_valid'] is False
    assert result['broken_links'][0]['audit_id'] == chain[2].audit_id


def test_entity_history_is_chronological(chain, recorder):
    history = recorder.get_entity_history('CRFInstance', 100)

    assert [entry['action'] for entry in history] == ['CRF_SDV_VERIFIED', 'CRF_LOCKED']
    assert history[1]['reason'] == 'Visit complete'
    assert history[1]['old_value'] == {'status': 'data_complete'}


def test_audit_stats(chain, recorder):
    stats = recorder.get_audit_stats()

    assert stats['total_events'] == 3
    assert stats['latest_audit_id'] == chain[2].audit_id
    assert {'action': 'CRF_LOCKED', 'count': 1} in stats['action_distribution']


def test_verify_command_passes_on_intact_chain(chain):
    out = StringIO()
    call_command('verify_audit_chain', stdout=out)

    assert 'Events checked: 3' in out.getvalue()
    assert 'Audit chain intact' in out.getvalue()


def test_verify_command_fails_on_tampered_chain(chain):
    with connection.cursor() as cursor:
        cursor.execute(
            'UPDATE audit_event SET actor_id = %s WHERE audit_id = %s',
            [999, chain[0].audit_id],
        )

    with pytest.raises(CommandError):
        call_command('verify_audit_chain', stdout=StringIO())
