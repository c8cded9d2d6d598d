"""
Model and document store tests - sync state transitions and transactional writes
"""

import pytest

from cal_ops.errors import InvalidTransitionError
from models import (
    Channel, SyncState, SyncCoordination, EventMapping,
    PENDING, SYNCING, COMPLETE, FAILED,
)
from storage.store import JsonDocumentStore, CHANNELS, USERS


class TestSyncStateTransitions:

    @pytest.mark.unit
    def test_transition_bumps_version_and_keeps_original(self):
        state = SyncState()
        new_state = state.transition(status=SYNCING, page_token='page-50')

        assert new_state.version == 1
        assert new_state.page_token == 'page-50'
        assert state.status == PENDING and state.version == 0

    @pytest.mark.unit
    def test_syncing_is_reentrant(self):
        state = SyncState(status=SYNCING)
        assert state.transition(status=SYNCING).status == SYNCING

    @pytest.mark.unit
    @pytest.mark.parametrize('terminal', [COMPLETE, FAILED])
    def test_terminal_states_are_final(self, terminal):
        with pytest.raises(InvalidTransitionError):
            SyncState(status=terminal).transition(status=SYNCING)

    @pytest.mark.unit
    def test_syncing_cannot_go_back_to_pending(self):
        with pytest.raises(InvalidTransitionError):
            SyncState(status=SYNCING).transition(status=PENDING)

    @pytest.mark.unit
    def test_events_synced_never_decreases(self):
        with pytest.raises(InvalidTransitionError):
            SyncState(status=SYNCING, events_synced=10).transition(events_synced=5)

    @pytest.mark.unit
    def test_failed_events_are_deduplicated_in_order(self):
        state = SyncState().transition(failed_events=['b', 'a', 'b'])
        assert state.failed_events == ('b', 'a')


class TestRecordLayout:

    @pytest.mark.unit
    def test_channel_uses_camel_case_on_disk(self):
        channel = Channel('chan-1', 'user-1', 'cal@example.com', target_calendar_id='mirror@example.com',
                          sync_state=SyncState(status=SYNCING, page_token='p', failed_events=('x',)))
        data = channel.to_dict()

        assert data['targetCalendarId'] == 'mirror@example.com'
        assert data['syncState']['pageToken'] == 'p'
        assert data['syncState']['failedEvents'] == ['x']
        assert Channel.from_dict(data) == channel

    @pytest.mark.unit
    def test_mapping_id_is_composite_source_key(self):
        mapping = EventMapping('cal@example.com', 'evt1', 'mirror9', last_synced=1)
        assert mapping.id == 'cal@example.com_evt1'

    @pytest.mark.unit
    def test_coordination_defaults(self):
        coordination = SyncCoordination.from_dict({'channelIds': ['a', 'b'], 'createdAt': 5})
        assert coordination.status == 'running'
        assert coordination.current_index == 0
        assert coordination.created_at == 5


class TestDocumentStore:

    @pytest.mark.unit
    def test_transaction_commits_on_clean_exit(self, store):
        with store.transaction() as txn:
            txn.set(USERS, 'u1', {'name': 'one'})
            assert txn.get(USERS, 'u1') == {'name': 'one'}

        assert store.get(USERS, 'u1') == {'name': 'one'}

    @pytest.mark.unit
    def test_transaction_discards_writes_on_error(self, store):
        store.set(USERS, 'u1', {'count': 1})

        with pytest.raises(RuntimeError):
            with store.transaction() as txn:
                txn.update(USERS, 'u1', {'count': 2})
                raise RuntimeError("abort")

        assert store.get(USERS, 'u1') == {'count': 1}

    @pytest.mark.unit
    def test_update_of_missing_document_raises(self, store):
        with pytest.raises(KeyError):
            store.update(USERS, 'ghost', {'a': 1})

    @pytest.mark.unit
    def test_create_is_insert_if_absent(self, store):
        assert store.create(USERS, 'u1', {'v': 1})
        assert not store.create(USERS, 'u1', {'v': 2})
        assert store.get(USERS, 'u1') == {'v': 1}

    @pytest.mark.unit
    def test_returned_documents_are_copies(self, store):
        store.set(USERS, 'u1', {'tags': ['a']})
        store.get(USERS, 'u1')['tags'].append('b')
        assert store.get(USERS, 'u1') == {'tags': ['a']}

    @pytest.mark.unit
    def test_query_filters_on_fields(self, store):
        store.set(CHANNELS, 'c1', {'userId': 'u1'})
        store.set(CHANNELS, 'c2', {'userId': 'u2'})

        assert [doc_id for doc_id, _ in store.query(CHANNELS, userId='u1')] == ['c1']

    @pytest.mark.unit
    def test_data_survives_reload(self, tmp_path):
        path = str(tmp_path / 'nested' / 'store.json')
        JsonDocumentStore(path).set(USERS, 'u1', {'v': 1})

        assert JsonDocumentStore(path).get(USERS, 'u1') == {'v': 1}

    @pytest.mark.unit
    def test_delete_reports_existence(self, store):
        store.set(USERS, 'u1', {})
        assert store.delete(USERS, 'u1')
        assert not store.delete(USERS, 'u1')


class TestSyncStore:

    @pytest.mark.unit
    def test_pause_and_resume_all_user_channels(self, sync_store, make_channel):
        make_channel('c1')
        make_channel('c2')
        make_channel('c3', user_id='someone-else')

        assert sync_store.set_paused('user-1', True) == 2
        assert [c.paused for c in sync_store.list_channels('user-1')] == [True, True]
        assert not sync_store.get_channel('c3').paused

        sync_store.set_paused('user-1', False)
        assert not any(c.paused for c in sync_store.list_channels('user-1'))

    @pytest.mark.unit
    def test_coordination_lives_on_user_record(self, sync_store, store):
        store.set(USERS, 'user-1', {'tokens': {'access_token': 'x'}})
        sync_store.save_coordination('user-1', SyncCoordination(['a'], created_at=1))

        sync_store.update_coordination('user-1', status='complete')

        user = store.get(USERS, 'user-1')
        assert user['tokens'] == {'access_token': 'x'}
        assert user['syncCoordination']['status'] == 'complete'
