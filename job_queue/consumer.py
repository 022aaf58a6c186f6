"""
Queue Consumer — Pulls jobs from a named queue and drives a handler.

Runs as one or more async tasks inside the worker process. For horizontal
scaling, deploy several processes against the same Redis; BLMOVE hands
each job to exactly one worker slot.

Topology:
  ┌──────────────┐        ┌─────────────────┐       ┌────────────┐
  │ Schedulers   │──add──▶│ wait (list)      │──────▶│ QueueWorker│
  │ API / Bot    │        └─────────────────┘       │  slots     │
  └──────────────┘                 ▲                 └─────┬──────┘
                                   │ promote               │
                         ┌─────────┴───────┐               │
                         │ delayed (zset)  │◀── retry ─────┤
                         └─────────────────┘               │
                         ┌─────────────────┐               │
                         │ failed (list)   │◀── exhaust ───┘
                         └─────────────────┘
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Awaitable, Callable, Optional

from job_queue.errors import RetryableJobError
from job_queue.message_queue import JobQueue, JobState, QueueJob, get_job_queue

logger = structlog.get_logger()

JobHandler = Callable[[QueueJob], Awaitable[Any]]


class QueueWorker:
    """
    Consumes jobs from one queue with bounded concurrency.

    The handler signals the outcome by how it returns:
      - returns normally          → job completed
      - raises RetryableJobError  → retried with backoff while attempts remain
      - raises anything else      → terminal failure, logged with traceback

    Usage:
        worker = QueueWorker(queue, Queues.SERVICE_SYNC, handler, concurrency=5)
        await worker.start()
        ...
        await worker.stop(grace=30)
    """

    def __init__(
        self,
        queue: Optional[JobQueue],
        queue_name: str,
        handler: JobHandler,
        concurrency: int = 1,
        fetch_timeout: float = 1.0,
        shutdown_grace: float = 30.0,
    ):
        self.queue = queue or get_job_queue()
        self.queue_name = queue_name
        self.handler = handler
        self.concurrency = max(1, concurrency)
        self.fetch_timeout = fetch_timeout
        self.shutdown_grace = shutdown_grace
        self._tasks: list[asyncio.Task] = []
        self._in_flight: set[asyncio.Task] = set()
        self._running = False
        self.stats = {"completed": 0, "retried": 0, "failed": 0}

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Spawn the worker slots. Returns immediately."""
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._slot(i), name=f"{self.queue_name}-slot-{i}")
            for i in range(self.concurrency)
        ]
        logger.info("queue_worker_started", queue=self.queue_name, concurrency=self.concurrency)

    async def stop(self, grace: Optional[float] = None) -> None:
        """
        Stop fetching, wait up to `grace` seconds for in-flight handlers,
        then cancel whatever is left. A cancelled job stays active and is
        re-delivered once its lease expires.
        """
        if not self._running and not self._tasks:
            return
        self._running = False
        grace = self.shutdown_grace if grace is None else grace

        if self._in_flight:
            done, pending = await asyncio.wait(set(self._in_flight), timeout=grace)
            if pending:
                logger.warning("queue_worker_abandoning_jobs",
                               queue=self.queue_name, count=len(pending))
                for task in pending:
                    task.cancel()

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info("queue_worker_stopped", queue=self.queue_name, **self.stats)

    async def _slot(self, slot: int):
        while self._running:
            try:
                job = await self.queue.fetch_next(self.queue_name, timeout=self.fetch_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("queue_fetch_error", queue=self.queue_name, slot=slot, error=str(e))
                await asyncio.sleep(1)
                continue

            if job is None:
                continue
            if not self._running:
                # fetched during shutdown; let the lease expire so another worker picks it up
                logger.info("job_left_for_redelivery", queue=self.queue_name, job_id=job.id)
                return

            task = asyncio.create_task(self.process(job))
            self._in_flight.add(task)
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # outcome not recorded; the lease expiry re-delivers the job
                logger.error("queue_job_finalize_error",
                             queue=self.queue_name, slot=slot, job_id=job.id, error=str(e))
            finally:
                self._in_flight.discard(task)

    async def _heartbeat(self, job: QueueJob):
        interval = max(self.queue.stall_lease_ms / 2000, 0.05)
        while True:
            await asyncio.sleep(interval)
            try:
                await self.queue.extend_lease(job)
            except Exception as e:
                logger.warning("job_lease_extend_failed", job_id=job.id, error=str(e))

    async def process(self, job: QueueJob) -> JobState:
        """Run the handler for one job and record the outcome."""
        logger.info("processing_job",
                    queue=self.queue_name,
                    job_id=job.id,
                    name=job.name,
                    attempt=job.attempts_made + 1)

        heartbeat = asyncio.create_task(self._heartbeat(job))
        try:
            await self.handler(job)
        except RetryableJobError as e:
            state = await self.queue.fail(job, str(e), retryable=True)
            if state == JobState.DELAYED:
                self.stats["retried"] += 1
                logger.warning("job_retry_scheduled",
                               queue=self.queue_name, job_id=job.id,
                               attempts_made=job.attempts_made,
                               backoff_ms=job.backoff_delay_ms(), error=str(e))
            else:
                self.stats["failed"] += 1
                logger.error("job_failed",
                             queue=self.queue_name, job_id=job.id,
                             attempts_made=job.attempts_made, error=str(e))
            return state
        except Exception as e:
            self.stats["failed"] += 1
            logger.error("job_processing_error",
                         queue=self.queue_name, job_id=job.id,
                         error=str(e), exc_info=True)
            return await self.queue.fail(job, f"{type(e).__name__}: {e}", retryable=False)
        finally:
            heartbeat.cancel()

        await self.queue.complete(job)
        self.stats["completed"] += 1
        logger.info("job_completed", queue=self.queue_name, job_id=job.id)
        return JobState.COMPLETED


# ──────────────────────────────────────────────────────────────
#  Delayed Job Promoter
# ──────────────────────────────────────────────────────────────

class DelayedJobPromoter:
    """
    Background task that periodically moves due delayed/retry jobs into
    their wait lists and re-delivers jobs whose worker lease expired.
    """

    def __init__(self, queue: JobQueue = None, queue_names: list[str] = (),
                 interval_seconds: float = 1.0):
        self.queue = queue or get_job_queue()
        self.queue_names = list(queue_names)
        self.interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def start_background(self) -> asyncio.Task:
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def tick(self) -> dict[str, int]:
        promoted = stalled = 0
        for name in self.queue_names:
            promoted += await self.queue.promote_delayed(name)
            stalled += await self.queue.requeue_stalled(name)
        return {"promoted": promoted, "stalled": stalled}

    async def _run(self):
        logger.info("delayed_promoter_started", interval=self.interval, queues=self.queue_names)
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("promoter_error", error=str(e))
            await asyncio.sleep(self.interval)
