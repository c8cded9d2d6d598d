"""
Batch processor tests - pagination, checkpoints, resumption and failure handling
"""

import pytest

from conftest import SOURCE_CALENDAR, TARGET_CALENDAR
from cal_ops.errors import ConfigurationError
from models import PENDING, SYNCING, COMPLETE, FAILED
from sync.batch import BatchProcessor
from sync.mirror import EventMirror


@pytest.fixture
def processor(sync_store, clients, rate_limiter):
    return BatchProcessor(sync_store, clients, rate_limiter)


class TestPagination:

    @pytest.mark.batch
    def test_125_events_take_three_batches(self, provider, processor, make_channel, sync_store):
        provider.add_events(SOURCE_CALENDAR, 125)
        make_channel()

        results = [processor.process('chan-1') for _ in range(3)]

        assert [r.synced_count for r in results] == [50, 50, 25]
        assert [r.has_more for r in results] == [True, True, False]
        channel = sync_store.get_channel('chan-1')
        assert channel.sync_state.status == COMPLETE
        assert channel.sync_state.events_synced == 125
        assert channel.sync_state.page_token is None
        assert channel.sync_token == f"sync-{SOURCE_CALENDAR}"
        assert len(provider.events(TARGET_CALENDAR)) == 125

    @pytest.mark.batch
    def test_checkpoint_after_first_page(self, provider, processor, make_channel, sync_store):
        provider.add_events(SOURCE_CALENDAR, 125)
        make_channel()

        processor.process('chan-1')

        state = sync_store.get_channel('chan-1').sync_state
        assert state.status == SYNCING
        assert state.page_token == 'page-50'
        assert state.events_synced == 50
        assert state.time_max is not None
        assert provider.list_calls[0]['max_results'] == 50
        assert provider.list_calls[0]['time_max'] == state.time_max

    @pytest.mark.batch
    def test_rate_limit_between_writes_not_after_last(self, provider, processor, make_channel, sleeps):
        provider.add_events(SOURCE_CALENDAR, 5)
        make_channel()

        processor.process('chan-1')

        assert sleeps.calls == [0.15] * 4

    @pytest.mark.batch
    def test_continuation_scheduled_only_while_more_pages(self, provider, sync_store, clients, rate_limiter,
                                                          make_channel):
        continued = []
        processor = BatchProcessor(sync_store, clients, rate_limiter, continuation=continued.append)
        provider.add_events(SOURCE_CALENDAR, 60)
        make_channel()

        processor.process('chan-1')
        processor.process('chan-1')

        assert len(continued) == 1
        assert continued[0].sync_state.page_token == 'page-50'


class TestResumption:

    @pytest.mark.batch
    def test_resumes_from_stored_page_token(self, provider, processor, make_channel, sync_store):
        provider.add_events(SOURCE_CALENDAR, 125)
        make_channel(status=SYNCING, page_token='page-100', events_synced=100)

        result = processor.process('chan-1')

        assert provider.list_calls[0]['page_token'] == 'page-100'
        assert result.synced_count == 25
        state = sync_store.get_channel('chan-1').sync_state
        assert state.status == COMPLETE
        assert state.events_synced == 125

    @pytest.mark.batch
    def test_expired_page_token_restarts_from_first_page(self, provider, processor, make_channel, sync_store):
        provider.add_events(SOURCE_CALENDAR, 125)
        provider.expired_page_tokens.add('page-100')
        make_channel(status=SYNCING, page_token='page-100', events_synced=100)

        result = processor.process('chan-1')

        assert [c['page_token'] for c in provider.list_calls] == ['page-100', None]
        assert result.synced_count == 50
        assert sync_store.get_channel('chan-1').sync_state.page_token == 'page-50'


class TestFailures:

    @pytest.mark.batch
    def test_missing_source_calendar_fails_channel(self, provider, processor, make_channel, sync_store):
        provider.missing_calendars.add(SOURCE_CALENDAR)
        make_channel()

        result = processor.process('chan-1')

        assert result.status == FAILED
        state = sync_store.get_channel('chan-1').sync_state
        assert state.status == FAILED
        assert 'not found' in state.last_error

    @pytest.mark.batch
    def test_missing_target_fails_and_raises(self, processor, make_channel, sync_store):
        make_channel(target_calendar_id=None)

        with pytest.raises(ConfigurationError):
            processor.process('chan-1')

        assert sync_store.get_channel('chan-1').sync_state.status == FAILED

    @pytest.mark.batch
    def test_unknown_channel_raises(self, processor):
        with pytest.raises(ConfigurationError):
            processor.process('nope')

    @pytest.mark.batch
    def test_unexpected_error_fails_channel_and_propagates(self, provider, clients, processor, make_channel,
                                                           sync_store, monkeypatch):
        provider.add_events(SOURCE_CALENDAR, 3)
        make_channel()

        def broken(*args, **kwargs):
            raise RuntimeError("provider exploded")

        monkeypatch.setattr(clients.reader, 'list_events', broken)

        with pytest.raises(RuntimeError):
            processor.process('chan-1')

        state = sync_store.get_channel('chan-1').sync_state
        assert state.status == FAILED
        assert state.last_error == 'provider exploded'

    @pytest.mark.batch
    @pytest.mark.parametrize('status', [COMPLETE, FAILED])
    def test_terminal_channels_are_skipped(self, provider, processor, make_channel, status):
        provider.add_events(SOURCE_CALENDAR, 3)
        make_channel(status=status)

        result = processor.process('chan-1')

        assert result.skipped
        assert provider.list_calls == []


class TestRetryLedger:

    @pytest.mark.batch
    def test_failed_event_is_recorded_then_recovered(self, provider, processor, make_channel, sync_store, sleeps):
        provider.add_events(SOURCE_CALENDAR, 60)
        provider.failing_events.add('evt0001')
        make_channel()

        first = processor.process('chan-1')
        state = sync_store.get_channel('chan-1').sync_state
        assert first.failed_count == 1
        assert state.failed_events == ('evt0001',)
        assert state.events_synced == 49

        provider.failing_events.clear()
        sleeps.calls.clear()
        processor.process('chan-1')

        state = sync_store.get_channel('chan-1').sync_state
        assert sleeps.calls[0] == 1.0
        assert state.failed_events == ()
        assert state.retry_count == 1
        assert state.events_synced == 60
        assert state.status == COMPLETE

    @pytest.mark.batch
    def test_last_retry_uses_capped_backoff(self, provider, processor, make_channel, sync_store, sleeps):
        provider.add_events(SOURCE_CALENDAR, 60)
        provider.failing_events.add('evt0001')
        make_channel(status=SYNCING, page_token='page-50', failed_events=('evt0001',), retry_count=4)

        processor.process('chan-1')

        state = sync_store.get_channel('chan-1').sync_state
        assert sleeps.calls[0] == 16.0
        assert state.retry_count == 5
        assert state.failed_events == ('evt0001',)

    @pytest.mark.batch
    def test_no_retry_once_limit_reached(self, provider, processor, make_channel, sync_store, sleeps):
        provider.add_events(SOURCE_CALENDAR, 60)
        provider.failing_events.add('evt0001')
        make_channel(status=SYNCING, page_token='page-50', failed_events=('evt0001',), retry_count=5)

        processor.process('chan-1')

        state = sync_store.get_channel('chan-1').sync_state
        assert state.retry_count == 5
        assert state.failed_events == ('evt0001',)
        assert state.status == COMPLETE
        assert all(s == 0.15 for s in sleeps.calls)

    @pytest.mark.batch
    def test_pending_channel_without_failures_never_waits(self, provider, processor, make_channel, sleeps):
        provider.add_events(SOURCE_CALENDAR, 1)
        make_channel(status=PENDING)

        processor.process('chan-1')

        assert sleeps.calls == []


class TestCheckpointWrites:

    @pytest.mark.batch
    def test_pause_during_batch_survives_checkpoint(self, provider, clients, processor, make_channel, sync_store,
                                                    monkeypatch):
        provider.add_events(SOURCE_CALENDAR, 5)
        make_channel()
        insert = clients.writer.insert_event

        def insert_then_pause(calendar_id, event_data):
            if not provider.writes:
                sync_store.set_paused('user-1', True)
            return insert(calendar_id, event_data)

        monkeypatch.setattr(clients.writer, 'insert_event', insert_then_pause)

        processor.process('chan-1')

        channel = sync_store.get_channel('chan-1')
        assert channel.paused is True
        assert channel.sync_state.status == COMPLETE
        assert channel.sync_token == f"sync-{SOURCE_CALENDAR}"

    @pytest.mark.batch
    def test_cancelled_event_is_removed_and_not_counted(self, provider, clients, processor, make_channel,
                                                        sync_store):
        provider.add_events(SOURCE_CALENDAR, 3)
        existing = EventMirror(clients.reader, clients.writer, sync_store).mirror(
            SOURCE_CALENDAR, 'evt0001', TARGET_CALENDAR)
        provider.events(SOURCE_CALENDAR)['evt0001']['status'] = 'cancelled'
        make_channel()

        result = processor.process('chan-1')

        assert result.synced_count == 2
        assert sync_store.get_channel('chan-1').sync_state.events_synced == 2
        assert sync_store.get_mapping(SOURCE_CALENDAR, 'evt0001') is None
        assert existing.event_id not in provider.events(TARGET_CALENDAR)

    @pytest.mark.batch
    def test_channel_removed_mid_batch_is_not_recreated(self, provider, clients, processor, make_channel,
                                                        sync_store, monkeypatch):
        provider.add_events(SOURCE_CALENDAR, 60)
        make_channel()
        insert = clients.writer.insert_event

        def insert_then_remove(calendar_id, event_data):
            sync_store.delete_channel('chan-1')
            return insert(calendar_id, event_data)

        monkeypatch.setattr(clients.writer, 'insert_event', insert_then_remove)

        result = processor.process('chan-1')

        assert result.has_more
        assert sync_store.get_channel('chan-1') is None
