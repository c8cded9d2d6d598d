# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Round-Robin Coordinator - interleaves backfill batches across a user's channels

Each invocation claims one channel from a transactional cursor, runs one
batch for it, and either schedules the next invocation or closes the
coordination once every channel has reached a terminal status.
"""
import logging
from typing import Callable, List, Optional

import config
from cal_ops.errors import ConfigurationError, FatalSyncError, SyncInProgressError
from models import (
    SyncCoordination, FAILED,
    COORDINATION_RUNNING, COORDINATION_COMPLETE, COORDINATION_FAILED,
)
from storage.store import USERS
from tasks import advance_task_name
from utils.logger import StructuredLogger
from utils.timezone import now_ms

logger = logging.getLogger(__name__)


class RoundRobinCoordinator:
    """Drives one batch per invocation over a rotating cursor of channels"""

    def __init__(self, sync_store, batch_processor, task_queue,
                 clock: Callable[[], int] = now_ms,
                 max_iterations: int = config.MAX_COORDINATION_ITERATIONS,
                 max_age_seconds: int = config.MAX_COORDINATION_AGE_SECONDS,
                 delay_seconds: int = config.COORDINATOR_DELAY_SECONDS):
        self.store = sync_store
        self.batch_processor = batch_processor
        self.task_queue = task_queue
        self.clock = clock
        self.max_iterations = max_iterations
        self.max_age_seconds = max_age_seconds
        self.delay_seconds = delay_seconds
        self.structured_logger = StructuredLogger(__name__)

    def start(self, user_id: str, channel_ids: Optional[List[str]] = None) -> SyncCoordination:
        """
        Create a fresh coordination for a user and schedule its first step.

        A finished run, or a running one past the age cap, is replaced.

        Raises:
            SyncInProgressError: a live run already exists for the user
            ConfigurationError: the user has no channels
        """
        current = self.store.get_coordination(user_id)
        if current is not None and current.status == COORDINATION_RUNNING and not self._is_stale(current):
            raise SyncInProgressError(
                f"Sync already running for user {user_id} "
                f"(iteration {current.iteration_count}, started {current.created_at})"
            )

        if channel_ids is None:
            channel_ids = sorted(channel.channel_id for channel in self.store.list_channels(user_id))
        if not channel_ids:
            raise ConfigurationError(f"User {user_id} has no channels to sync")

        coordination = SyncCoordination(channel_ids=list(channel_ids), created_at=self.clock())
        self.store.save_coordination(user_id, coordination)
        logger.info(f"🚀 Starting round-robin sync for user {user_id} over {len(channel_ids)} channel(s)")

        self._schedule_next(user_id, coordination)
        return coordination

    def advance(self, user_id: str, run_id: Optional[int] = None, step: Optional[int] = None):
        """
        Process exactly one batch for the channel at the cursor.

        Tasks carry the run id (coordination createdAt) and the step
        (iteration count) they were scheduled for. A task from a replaced
        run, or a second delivery of an already executed step, is a no-op.
        Manual calls without them act on whatever run is current.

        A failing batch only fails its own channel; the coordination keeps
        going and the error is re-raised afterwards for visibility.

        Raises:
            ConfigurationError: no coordination exists for the user
            FatalSyncError: a safety bound was exceeded, or every channel failed
        """
        channel_id = self._claim_next(user_id, run_id, step)
        if channel_id is None:
            return None

        result = None
        batch_error = None
        channel = self.store.get_channel(channel_id)
        if channel is None:
            logger.warning(f"Channel {channel_id} no longer exists, skipping")
        elif channel.sync_state.is_terminal:
            logger.debug(f"Channel {channel_id} is {channel.sync_state.status}, nothing to do")
        else:
            try:
                result = self.batch_processor.process(channel_id)
            except Exception as e:
                batch_error = e
                logger.error(f"❌ Batch for channel {channel_id} failed, continuing with other channels: {e}")

        self.structured_logger.log_sync_event('coordination_advanced', {
            'user_id': user_id,
            'channel_id': channel_id,
            'batch_status': result.status if result else None,
            'batch_error': type(batch_error).__name__ if batch_error else None,
        })
        self._continue_or_finish(user_id)

        if batch_error is not None:
            raise batch_error
        return result

    def _is_stale(self, coordination: SyncCoordination) -> bool:
        return (self.clock() - coordination.created_at) / 1000.0 > self.max_age_seconds

    def _claim_next(self, user_id: str, run_id: Optional[int] = None,
                    step: Optional[int] = None) -> Optional[str]:
        """Advance the cursor by one inside a transaction and return the old slot"""
        runaway = None
        channel_id = None

        with self.store.transaction() as txn:
            user = txn.get(USERS, user_id) or {}
            data = user.get('syncCoordination')
            if not data:
                raise ConfigurationError(f"No sync coordination for user {user_id}")

            coordination = SyncCoordination.from_dict(data)
            if coordination.status != COORDINATION_RUNNING:
                logger.info(f"Coordination for user {user_id} is {coordination.status}, nothing to do")
                return None
            if run_id is not None and run_id != coordination.created_at:
                logger.info(f"Dropping task for replaced run {run_id} of user {user_id}")
                return None
            if step is not None and step != coordination.iteration_count:
                logger.info(f"Step {step} for user {user_id} already ran "
                            f"(now at {coordination.iteration_count}), dropping duplicate")
                return None
            if not coordination.channel_ids:
                raise ConfigurationError(f"Coordination for user {user_id} has no channels")

            now = self.clock()
            age_seconds = (now - coordination.created_at) / 1000.0
            if coordination.iteration_count >= self.max_iterations:
                runaway = f"Coordination exceeded {self.max_iterations} iterations"
            elif age_seconds > self.max_age_seconds:
                runaway = f"Coordination exceeded {self.max_age_seconds}s age"

            if runaway:
                coordination.status = COORDINATION_FAILED
                coordination.last_error = runaway
                coordination.completed_at = now
            else:
                index = coordination.current_index % len(coordination.channel_ids)
                channel_id = coordination.channel_ids[index]
                coordination.current_index = (index + 1) % len(coordination.channel_ids)
                coordination.iteration_count += 1
                coordination.last_iteration_at = now

            user['syncCoordination'] = coordination.to_dict()
            txn.set(USERS, user_id, user)

        if runaway:
            # Raised after commit so the failed status is persisted
            self.structured_logger.log_sync_event('coordination_failed', {
                'user_id': user_id,
                'cause': runaway,
            })
            raise FatalSyncError(runaway)
        return channel_id

    def _continue_or_finish(self, user_id: str):
        coordination = self.store.get_coordination(user_id)
        if coordination is None or coordination.status != COORDINATION_RUNNING:
            return

        channels = [self.store.get_channel(cid) for cid in coordination.channel_ids]
        existing = [channel for channel in channels if channel is not None]

        # Missing channels count as done
        if not all(channel.sync_state.is_terminal for channel in existing):
            self._schedule_next(user_id, coordination)
            return

        failed = [channel for channel in existing if channel.sync_state.status == FAILED]
        if existing and len(failed) == len(existing):
            cause = f"All {len(failed)} channel(s) failed for user {user_id}"
            self.store.update_coordination(
                user_id, status=COORDINATION_FAILED, last_error=cause, completed_at=self.clock()
            )
            self.structured_logger.log_sync_event('coordination_failed', {
                'user_id': user_id,
                'cause': cause,
                'iterations': coordination.iteration_count,
            })
            raise FatalSyncError(cause)

        self.store.update_coordination(user_id, status=COORDINATION_COMPLETE, completed_at=self.clock())
        self.structured_logger.log_sync_event('coordination_completed', {
            'user_id': user_id,
            'channels': len(coordination.channel_ids),
            'failed_channels': len(failed),
            'iterations': coordination.iteration_count,
        })

    def _schedule_next(self, user_id: str, coordination: SyncCoordination):
        name = advance_task_name(user_id, coordination.created_at, coordination.iteration_count)
        payload = {
            'userId': user_id,
            'runId': coordination.created_at,
            'step': coordination.iteration_count,
        }
        self.task_queue.enqueue(name, payload, delay_seconds=self.delay_seconds)
