"""Bounded background pool for login recording.

Callers on the authentication path submit events and return immediately.
Events are sharded by user id onto a fixed set of workers, each draining its
own bounded queue, so a single user's events are recorded in submission order
while different users proceed in parallel. When a shard's queue is full the
configured backpressure policy either rejects the new event or drops the
oldest queued one.
"""

import asyncio
import contextlib
import zlib
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import StrEnum

import structlog

from .models import LoginEvent, LoginEventType
from .recorder import LoginEventRecorder

logger = structlog.get_logger()


class BackpressurePolicy(StrEnum):
    REJECT = "reject"
    DROP_OLDEST = "drop_oldest"


@dataclass
class DispatcherStats:
    queue_depth: int = 0
    submitted: int = 0
    processed: int = 0
    rejected: int = 0
    dropped: int = 0
    failed: int = 0


class LoginEventDispatcher:
    def __init__(
        self,
        recorder: LoginEventRecorder,
        worker_count: int = 4,
        queue_size: int = 1000,
        policy: BackpressurePolicy | str = BackpressurePolicy.REJECT,
    ) -> None:
        if worker_count < 1:
            raise ValueError(f"worker_count must be >= 1, got {worker_count}")
        if queue_size < 1:
            raise ValueError(f"queue_size must be >= 1, got {queue_size}")
        self._recorder = recorder
        self._policy = BackpressurePolicy(policy)
        self._queues: list[asyncio.Queue[LoginEvent]] = [
            asyncio.Queue(maxsize=queue_size) for _ in range(worker_count)
        ]
        self._workers: list[asyncio.Task] = []
        self._stats = DispatcherStats()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def queue_depth(self) -> int:
        return sum(q.qsize() for q in self._queues)

    def stats(self) -> DispatcherStats:
        self._stats.queue_depth = self.queue_depth
        return DispatcherStats(**asdict(self._stats))

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(index, queue), name=f"login-worker-{index}")
            for index, queue in enumerate(self._queues)
        ]
        logger.info(
            "login_dispatcher_started",
            workers=len(self._workers),
            queue_size=self._queues[0].maxsize,
            policy=self._policy.value,
        )

    async def stop(self, drain: bool = True) -> None:
        if drain and self._workers:
            await self.join()
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._workers = []
        logger.info("login_dispatcher_stopped", **asdict(self.stats()))

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        for queue in self._queues:
            await queue.join()

    def shard_for(self, user_id: str) -> int:
        return zlib.crc32(user_id.encode("utf-8")) % len(self._queues)

    def submit(self, event: LoginEvent) -> bool:
        """Enqueue without blocking. False when the event was rejected."""
        queue = self._queues[self.shard_for(event.user_id)]
        self._stats.submitted += 1
        try:
            queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            pass

        if self._policy is BackpressurePolicy.REJECT:
            self._stats.rejected += 1
            logger.warning(
                "login_event_rejected",
                user_id=event.user_id,
                event_type=event.event_type.value,
                queue_depth=self.queue_depth,
            )
            return False

        dropped = queue.get_nowait()
        queue.task_done()
        self._stats.dropped += 1
        logger.warning(
            "login_event_dropped",
            dropped_user_id=dropped.user_id,
            dropped_event_type=dropped.event_type.value,
            queue_depth=self.queue_depth,
        )
        queue.put_nowait(event)
        return True

    # Fire-and-forget entry points for the authentication flow

    def record_login(
        self,
        user_id: str,
        ip_address: str | None,
        user_agent: str | None,
        timestamp: datetime | None = None,
    ) -> bool:
        fields = {"user_id": user_id, "ip_address": ip_address, "user_agent": user_agent}
        if timestamp is not None:
            fields["timestamp"] = timestamp
        return self.submit(LoginEvent(**fields))

    def record_logout(self, user_id: str) -> bool:
        return self.submit(LoginEvent(user_id=user_id, event_type=LoginEventType.LOGOUT))

    def update_activity(self, user_id: str, ip_address: str) -> bool:
        return self.submit(
            LoginEvent(user_id=user_id, event_type=LoginEventType.ACTIVITY, ip_address=ip_address)
        )

    def terminate_sessions(self, user_id: str, session_token_hash: str | None = None) -> bool:
        return self.submit(
            LoginEvent(
                user_id=user_id,
                event_type=LoginEventType.TERMINATE,
                session_token_hash=session_token_hash,
            )
        )

    async def _worker(self, index: int, queue: asyncio.Queue[LoginEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                await self._handle(event)
                self._stats.processed += 1
            except Exception:
                self._stats.failed += 1
                logger.exception(
                    "login_event_processing_error",
                    worker=index,
                    user_id=event.user_id,
                    event_type=event.event_type.value,
                )
            finally:
                queue.task_done()

    async def _handle(self, event: LoginEvent) -> None:
        if event.event_type == LoginEventType.LOGIN:
            await self._recorder.record_login(
                event.user_id, event.ip_address, event.user_agent, timestamp=event.timestamp
            )
        elif event.event_type == LoginEventType.LOGOUT:
            await self._recorder.record_logout(event.user_id)
        elif event.event_type == LoginEventType.ACTIVITY:
            if event.ip_address:
                await self._recorder.update_activity(event.user_id, event.ip_address)
        elif event.event_type == LoginEventType.TERMINATE:
            await self._recorder.terminate_sessions(event.user_id, event.session_token_hash)
