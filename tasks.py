# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Continuation task queue for backfill batches

Each task is a one-shot job identified by a deterministic, content-derived
name. Enqueueing a name that already exists is treated as success, so
duplicate enqueue attempts for the same logical step collapse to one run.
"""
import hashlib
import logging
import threading
import time
from typing import Callable, Dict, Optional

import requests
import schedule

import config
from auth.request_signing import RequestSigner
from storage.store import TASKS
from utils.timezone import now_ms

logger = logging.getLogger(__name__)

SCHEDULED = 'scheduled'
DONE = 'done'
FAILED = 'failed'


def task_name(kind: str, *parts) -> str:
    """Deterministic task name: same logical step, same name"""
    digest = hashlib.sha256(':'.join(str(p) for p in parts).encode('utf-8')).hexdigest()
    return f"{kind}-{digest[:32]}"


def advance_task_name(user_id: str, coordination_created_at: int, iteration_count: int) -> str:
    return task_name('advance', user_id, coordination_created_at, iteration_count)


def batch_task_name(channel_id: str, state_version: int) -> str:
    return task_name('batch', channel_id, state_version)


class HttpTaskDispatcher:
    """Delivers a task by POSTing it to the continuation endpoint"""

    def __init__(self, url: str, signer: Optional[RequestSigner] = None,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.signer = signer
        self.session = session or requests.Session()

    def __call__(self, payload: Dict):
        headers = {'Content-Type': 'application/json'}
        if self.signer:
            headers.update(self.signer.signed_headers(payload))
        response = self.session.post(self.url, json=payload, headers=headers,
                                     timeout=config.API_TIMEOUT_SECONDS)
        response.raise_for_status()


class TaskQueue:
    """Schedules one-shot continuation tasks and runs them on a worker thread"""

    def __init__(self, store, dispatcher: Callable[[Dict], None],
                 scheduler: Optional[schedule.Scheduler] = None):
        self.store = store
        self.dispatcher = dispatcher
        self.scheduler = scheduler or schedule.Scheduler()
        self._lock = threading.Lock()
        self._running = False
        self._thread = None

    def enqueue(self, name: str, payload: Dict, delay_seconds: int = 0) -> bool:
        """
        Schedule a task once.

        Returns:
            True when newly scheduled, False when a task with this name
            already exists (which callers treat as success)
        """
        created = self.store.create(TASKS, name, {
            'payload': payload,
            'status': SCHEDULED,
            'createdAt': now_ms(),
            'scheduleTime': now_ms() + delay_seconds * 1000,
        })
        if not created:
            logger.info(f"Task {name} already scheduled, skipping duplicate")
            return False

        self._schedule(name, payload, delay_seconds)
        logger.info(f"Task {name} enqueued with {delay_seconds}s delay")
        return True

    def _schedule(self, name: str, payload: Dict, delay_seconds: float):
        with self._lock:
            self.scheduler.every(max(int(delay_seconds), 1)).seconds.do(self._run_once, name, payload)

    def _run_once(self, name: str, payload: Dict):
        try:
            self.dispatcher(payload)
            self.store.update(TASKS, name, {'status': DONE, 'completedAt': now_ms()})
        except Exception as e:
            # A failing task must not take the worker down
            logger.error(f"❌ Task {name} failed: {e}", exc_info=True)
            self.store.update(TASKS, name, {'status': FAILED, 'lastError': str(e)[:500]})
        return schedule.CancelJob

    def resume_pending(self) -> int:
        """Re-arm tasks that were scheduled but never ran (process restart)"""
        pending = self.store.query(TASKS, status=SCHEDULED)
        for name, task in pending:
            remaining = max(0, (task.get('scheduleTime') or 0) - now_ms()) / 1000.0
            self._schedule(name, task.get('payload') or {}, remaining)
        if pending:
            logger.info(f"Re-armed {len(pending)} pending task(s)")
        return len(pending)

    def run_pending(self):
        with self._lock:
            jobs = [job for job in self.scheduler.jobs if job.should_run]
        # Jobs run outside the lock so a task may enqueue its successor
        for job in sorted(jobs):
            if job.run() is schedule.CancelJob:
                with self._lock:
                    self.scheduler.cancel_job(job)

    # ----- worker thread -----
    def start(self):
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                logger.info("Task worker already running")
                return
            self._running = True
            self._thread = threading.Thread(target=self._run_worker, daemon=True)
            self._thread.start()
        logger.info("✅ Task worker started")

    def stop(self):
        with self._lock:
            self._running = False
        if self._thread:
            self._thread.join(timeout=5)
            logger.info("✅ Task worker stopped")

    def is_running(self) -> bool:
        with self._lock:
            return self._running and self._thread is not None and self._thread.is_alive()

    def _run_worker(self):
        while True:
            with self._lock:
                if not self._running:
                    break
            self.run_pending()
            time.sleep(config.TASK_POLL_INTERVAL_SECONDS)
