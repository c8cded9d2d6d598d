# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

#!/usr/bin/env python3
"""
Calendar Mirror Sync - webhook receiver, continuation task endpoint and control API
"""
import os
import logging
import signal
import sys
from dataclasses import dataclass
from typing import Dict, Optional

from flask import Flask, jsonify, request

import config
from auth.request_signing import RequestSigner, SIGNATURE_HEADER, TIMESTAMP_HEADER
from cal_ops.clients import ClientFactory
from cal_ops.errors import (
    CalendarSyncError, ConfigurationError, FatalSyncError, SyncInProgressError,
    ResourceNotFoundError, TransientError,
)
from models import FAILED
from storage.store import JsonDocumentStore
from storage.sync_store import SyncStore
from sync.batch import BatchProcessor
from sync.coordinator import RoundRobinCoordinator
from sync.incremental import IncrementalSync
from tasks import TaskQueue, HttpTaskDispatcher, batch_task_name
from utils.logger import configure_logging
from utils.rate_limiter import RateLimiter
from utils.timezone import utc_now

configure_logging()
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ConfigurationError: 400,
    ResourceNotFoundError: 404,
    SyncInProgressError: 409,
    TransientError: 503,
    FatalSyncError: 500,
}


@dataclass
class SyncComponents:
    """Everything the endpoints need, built once per process"""
    sync_store: SyncStore
    task_queue: TaskQueue
    coordinator: RoundRobinCoordinator
    channel_batches: BatchProcessor
    incremental: IncrementalSync
    signer: Optional[RequestSigner] = None


def build_components(store: Optional[JsonDocumentStore] = None, clients=None,
                     rate_limiter: Optional[RateLimiter] = None,
                     dispatcher=None, scheduler=None) -> SyncComponents:
    """
    Wire the sync components together.

    Tests pass an in-memory store, fake clients and a no-op rate limiter.
    Without an explicit dispatcher, tasks are POSTed to TASK_CALLBACK_URL
    when configured and otherwise run in-process.
    """
    store = store or JsonDocumentStore(os.path.join(config.DATA_DIR, 'store.json'))
    sync_store = SyncStore(store)
    clients = clients or ClientFactory(store)
    rate_limiter = rate_limiter or RateLimiter()
    signer = RequestSigner(config.TASK_SIGNING_SECRET) if config.TASK_SIGNING_SECRET else None

    components = None

    def run_in_process(payload: Dict):
        run_task(components, payload)

    if dispatcher is None:
        if config.TASK_CALLBACK_URL:
            dispatcher = HttpTaskDispatcher(config.TASK_CALLBACK_URL, signer)
        else:
            dispatcher = run_in_process

    task_queue = TaskQueue(store, dispatcher, scheduler=scheduler)

    def enqueue_channel_batch(channel):
        task_queue.enqueue(
            batch_task_name(channel.channel_id, channel.sync_state.version),
            {'channelId': channel.channel_id},
            delay_seconds=config.BATCH_CONTINUATION_DELAY_SECONDS,
        )

    # Coordinated batches are re-driven by the coordinator, never by themselves
    coordinated_batches = BatchProcessor(sync_store, clients, rate_limiter)
    channel_batches = BatchProcessor(sync_store, clients, rate_limiter, continuation=enqueue_channel_batch)

    components = SyncComponents(
        sync_store=sync_store,
        task_queue=task_queue,
        coordinator=RoundRobinCoordinator(sync_store, coordinated_batches, task_queue),
        channel_batches=channel_batches,
        incremental=IncrementalSync(sync_store, clients, rate_limiter),
        signer=signer,
    )
    return components


def run_task(components: SyncComponents, payload: Dict):
    """Execute one continuation task payload"""
    if payload.get('userId'):
        return components.coordinator.advance(
            payload['userId'], run_id=payload.get('runId'), step=payload.get('step')
        )
    if payload.get('channelId'):
        # Single-channel mode kept for tasks enqueued before coordination existed
        return components.channel_batches.process(payload['channelId'])
    raise ConfigurationError("Task payload needs userId or channelId")


def _channel_summary(channel) -> Dict:
    state = channel.sync_state
    return {
        'channelId': channel.channel_id,
        'calendarId': channel.calendar_id,
        'targetCalendarId': channel.target_calendar_id,
        'status': state.status,
        'paused': channel.paused,
        'eventsSynced': state.events_synced,
        'failedEvents': len(state.failed_events),
        'retryCount': state.retry_count,
        'lastBatchTime': state.last_batch_time,
        'lastError': state.last_error,
        'incremental': channel.stats.to_dict(),
    }


def create_app(components: Optional[SyncComponents] = None) -> Flask:
    components = components or build_components()

    app = Flask(__name__)
    app.config['COMPONENTS'] = components

    # Security Headers Middleware
    @app.after_request
    def add_security_headers(response):
        """Add security headers to all responses"""
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response.headers['Server'] = 'Calendar Mirror Sync'
        return response

    @app.errorhandler(CalendarSyncError)
    def handle_sync_error(error):
        status = next((code for cls, code in ERROR_STATUS.items() if isinstance(error, cls)), 500)
        if status >= 500:
            logger.error(f"❌ {type(error).__name__}: {error}")
        else:
            logger.warning(f"{type(error).__name__}: {error}")
        return jsonify({'error': str(error), 'type': type(error).__name__}), status

    def _json_body() -> Dict:
        return request.get_json(silent=True) or {}

    def _require_user_id(data: Dict) -> str:
        user_id = data.get('userId') or request.args.get('userId')
        if not user_id:
            raise ConfigurationError("userId is required")
        return user_id

    @app.route('/health')
    def health_check():
        """Lightweight liveness check"""
        return jsonify({
            "status": "healthy",
            "timestamp": utc_now().isoformat(),
            "service": "calendar-mirror",
            "task_worker_running": components.task_queue.is_running(),
        }), 200

    @app.route('/webhook', methods=['POST'])
    def webhook():
        """Provider push notification for one channel"""
        channel_id = request.headers.get('X-Goog-Channel-ID')
        resource_state = request.headers.get('X-Goog-Resource-State')

        if resource_state == 'sync':
            logger.info(f"Webhook handshake for channel {channel_id}")
            return 'Sync acknowledged', 200

        if resource_state != 'exists':
            return 'OK', 200

        if not channel_id:
            return 'Missing channel id', 400

        try:
            result = components.incremental.handle_notification(channel_id)
        except Exception as e:
            logger.error(f"❌ Webhook processing failed for channel {channel_id}: {e}", exc_info=True)
            return 'Error processing webhook', 500

        if result.skipped:
            return f'Ignored ({result.skipped})', 200
        return 'OK', 200

    @app.route('/tasks/batch-sync', methods=['POST'])
    def batch_sync_task():
        """Continuation task: one coordinator step, or one legacy channel batch"""
        data = _json_body()

        if components.signer:
            valid, reason = components.signer.verify_request(
                data,
                request.headers.get(SIGNATURE_HEADER),
                request.headers.get(TIMESTAMP_HEADER),
                max_age_seconds=config.TASK_SIGNATURE_MAX_AGE_SECONDS,
            )
            if not valid:
                logger.warning(f"Rejected task request: {reason}")
                return jsonify({'error': reason}), 401

        result = run_task(components, data)
        body = {'success': True}
        if result is not None:
            body.update({
                'channelId': result.channel_id,
                'status': result.status,
                'synced': result.synced_count,
                'hasMore': result.has_more,
            })
        return jsonify(body), 200

    @app.route('/sync/start', methods=['POST'])
    def start_sync():
        data = _json_body()
        user_id = _require_user_id(data)
        coordination = components.coordinator.start(user_id, data.get('channelIds'))
        return jsonify({'success': True, 'coordination': coordination.to_dict()}), 202

    @app.route('/sync/status')
    def sync_status():
        user_id = _require_user_id({})
        channels = components.sync_store.list_channels(user_id)
        coordination = components.sync_store.get_coordination(user_id)
        return jsonify({
            'userId': user_id,
            'channels': [_channel_summary(channel) for channel in channels],
            'failedChannels': sum(1 for channel in channels if channel.sync_state.status == FAILED),
            'coordination': coordination.to_dict() if coordination else None,
        })

    @app.route('/sync/pause', methods=['POST'])
    def pause_sync():
        user_id = _require_user_id(_json_body())
        count = components.sync_store.set_paused(user_id, True)
        logger.info(f"⏸️ Paused {count} channel(s) for user {user_id}")
        return jsonify({'success': True, 'paused': True, 'channels': count})

    @app.route('/sync/resume', methods=['POST'])
    def resume_sync():
        user_id = _require_user_id(_json_body())
        count = components.sync_store.set_paused(user_id, False)
        logger.info(f"▶️ Resumed {count} channel(s) for user {user_id}")
        return jsonify({'success': True, 'paused': False, 'channels': count})

    @app.route('/sync/stop', methods=['POST'])
    def stop_sync():
        """Drop the user's channel records and coordination; mirrored events stay"""
        user_id = _require_user_id(_json_body())
        removed = components.sync_store.clear_user(user_id, include_mappings=False)
        logger.info(f"⏹️ Stopped sync for user {user_id}: {removed['channels']} channel(s) removed")
        return jsonify({'success': True, **removed})

    @app.route('/sync/clear', methods=['POST'])
    def clear_sync():
        """Like stop, and also forget event mappings; OAuth tokens are kept"""
        user_id = _require_user_id(_json_body())
        removed = components.sync_store.clear_user(user_id, include_mappings=True)
        logger.info(
            f"🧹 Cleared data for user {user_id}: {removed['channels']} channel(s), "
            f"{removed['mappings']} event mapping(s)"
        )
        return jsonify({'success': True, **removed})

    return app


app = create_app()


def start_background_worker():
    """Re-arm pending tasks and start the task worker thread"""
    task_queue = app.config['COMPONENTS'].task_queue
    task_queue.resume_pending()
    task_queue.start()


def signal_handler(sig, frame):
    """Handle shutdown signals"""
    logger.info("Received shutdown signal, cleaning up...")
    app.config['COMPONENTS'].task_queue.stop()
    sys.exit(0)


if __name__ == '__main__':
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    start_background_worker()
    logger.info(f"Starting calendar mirror service on port {config.PORT}")
    app.run(host='0.0.0.0', port=config.PORT)
