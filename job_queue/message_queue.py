"""
Job Queue — Abstract interface with Redis and in-memory backends.

Per-queue key topology (Redis, `{prefix}:{queue}:...`):
  id          — INCR counter for generated job ids
  job:{id}    — hash holding the job record (data, options, state, progress)
  wait        — list of ready job ids (LPUSH new, BLMOVE from the right)
  active      — list of job ids currently held by a worker
  leases      — sorted set id → lease deadline (ms); expired leases are stalled
  delayed     — sorted set id → ready-at (ms); delayed enqueues and retries
  completed   — list of finished job ids, trimmed to `keep_completed`
  failed      — list of terminal-failed job ids, trimmed to `keep_failed`

Lifecycle:
  waiting ─▶ active ─▶ completed
     ▲         │
     │         ├─▶ delayed (retry with backoff) ─▶ waiting
  delayed      └─▶ failed (attempts exhausted / unrecoverable)

A job enqueued with an explicit `job_id` that already exists in the queue is
not added again; the existing job is returned. Delivery is at-least-once:
a job whose worker dies stays in `active` until its lease expires and is
then put back at the head of `wait`.
"""
from __future__ import annotations

import asyncio
import json
import time
import structlog
from abc import ABC, abstractmethod
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Optional

from job_queue.errors import QueueConnectionError, QueueError

logger = structlog.get_logger()


def _now_ms() -> int:
    return int(time.time() * 1000)


# ──────────────────────────────────────────────────────────────
#  Job Model
# ──────────────────────────────────────────────────────────────

class JobState(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobOptions:
    """Per-enqueue options. Unset values fall back to the queue defaults."""
    delay_ms: int = 0
    job_id: Optional[str] = None
    attempts: Optional[int] = None
    backoff_ms: Optional[int] = None


@dataclass
class QueueJob:
    """A unit of work on the queue."""
    queue: str
    name: str
    data: dict[str, Any] = field(default_factory=dict)
    id: str = ""
    attempts: int = 3
    backoff_ms: int = 2000
    delay_ms: int = 0
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    progress: int = 0
    failed_reason: str = ""
    timestamp: int = 0
    processed_on: Optional[int] = None
    finished_on: Optional[int] = None

    def backoff_delay_ms(self) -> int:
        """Exponential backoff for the retry following `attempts_made` failures."""
        return self.backoff_ms * (2 ** max(self.attempts_made - 1, 0))

    def to_hash(self) -> dict[str, str]:
        d = asdict(self)
        d["data"] = json.dumps(self.data)
        d["state"] = self.state.value
        return {k: "" if v is None else str(v) for k, v in d.items()}

    @classmethod
    def from_hash(cls, raw: dict[str, str]) -> QueueJob:
        def _opt_int(value: str | None) -> Optional[int]:
            return int(value) if value not in (None, "") else None

        return cls(
            queue=raw.get("queue", ""),
            name=raw.get("name", ""),
            data=json.loads(raw["data"]) if raw.get("data") else {},
            id=raw.get("id", ""),
            attempts=int(raw.get("attempts") or 1),
            backoff_ms=int(raw.get("backoff_ms") or 0),
            delay_ms=int(raw.get("delay_ms") or 0),
            state=JobState(raw.get("state") or JobState.WAITING.value),
            attempts_made=int(raw.get("attempts_made") or 0),
            progress=int(raw.get("progress") or 0),
            failed_reason=raw.get("failed_reason", ""),
            timestamp=int(raw.get("timestamp") or 0),
            processed_on=_opt_int(raw.get("processed_on")),
            finished_on=_opt_int(raw.get("finished_on")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state.value,
            "progress": self.progress,
            "data": self.data,
            "attempts_made": self.attempts_made,
            "created_at": self.timestamp,
            "processed_on": self.processed_on,
            "finished_on": self.finished_on,
            "failed_reason": self.failed_reason or None,
        }


# ──────────────────────────────────────────────────────────────
#  Queue Names
# ──────────────────────────────────────────────────────────────

class Queues:
    SERVICE_SYNC = "service-sync"
    WHATSAPP_MESSAGE = "whatsapp-message"
    WHATSAPP_COMMAND = "whatsapp-command"


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class JobQueue(ABC):
    """Abstract job queue interface."""

    def __init__(
        self,
        default_attempts: int = 3,
        backoff_base_ms: int = 2000,
        keep_completed: int = 10,
        keep_failed: int = 50,
        stall_lease_ms: int = 60_000,
        clock: Callable[[], int] = _now_ms,
    ):
        self.default_attempts = default_attempts
        self.backoff_base_ms = backoff_base_ms
        self.keep_completed = keep_completed
        self.keep_failed = keep_failed
        self.stall_lease_ms = stall_lease_ms
        self._clock = clock

    def _build_job(self, queue: str, name: str, data: dict[str, Any],
                   opts: Optional[JobOptions], job_id: str) -> QueueJob:
        opts = opts or JobOptions()
        delay = max(int(opts.delay_ms), 0)
        return QueueJob(
            queue=queue,
            name=name,
            data=data,
            id=job_id,
            attempts=opts.attempts or self.default_attempts,
            backoff_ms=opts.backoff_ms if opts.backoff_ms is not None else self.backoff_base_ms,
            delay_ms=delay,
            state=JobState.DELAYED if delay > 0 else JobState.WAITING,
            timestamp=self._clock(),
        )

    @abstractmethod
    async def connect(self):
        """Establish connection to the queue backend."""
        ...

    @abstractmethod
    async def close(self):
        """Gracefully shut down."""
        ...

    @abstractmethod
    async def enqueue(self, queue: str, name: str, data: dict[str, Any],
                      opts: Optional[JobOptions] = None) -> QueueJob:
        """Add a job. Returns the existing job if `opts.job_id` is already present."""
        ...

    @abstractmethod
    async def fetch_next(self, queue: str, timeout: float = 2.0) -> Optional[QueueJob]:
        """Move the next ready job to active and return it, waiting up to `timeout`."""
        ...

    @abstractmethod
    async def complete(self, job: QueueJob) -> None:
        ...

    @abstractmethod
    async def fail(self, job: QueueJob, error: str, retryable: bool = True) -> JobState:
        """
        Record a failed attempt. Schedules a retry while attempts remain and
        the failure is retryable; otherwise the job becomes terminal-failed.
        Returns the job's new state.
        """
        ...

    @abstractmethod
    async def extend_lease(self, job: QueueJob) -> None:
        ...

    @abstractmethod
    async def update_progress(self, job: QueueJob, progress: int) -> None:
        ...

    @abstractmethod
    async def get_job(self, queue: str, job_id: str) -> Optional[QueueJob]:
        ...

    @abstractmethod
    async def get_jobs(self, queue: str, state: JobState) -> list[QueueJob]:
        ...

    @abstractmethod
    async def get_job_counts(self, queue: str) -> dict[str, int]:
        """Counts per state: waiting, active, delayed, completed, failed."""
        ...

    @abstractmethod
    async def retry(self, job: QueueJob) -> None:
        """Move a terminal-failed job back to waiting with a fresh attempt budget."""
        ...

    @abstractmethod
    async def promote_delayed(self, queue: str) -> int:
        """Move delayed jobs whose time has come to waiting."""
        ...

    @abstractmethod
    async def requeue_stalled(self, queue: str) -> int:
        """Put active jobs whose lease expired back at the head of waiting."""
        ...

    async def get_failed(self, queue: str) -> list[QueueJob]:
        return await self.get_jobs(queue, JobState.FAILED)

    @staticmethod
    def _clamp_progress(progress: int) -> int:
        return max(0, min(100, int(progress)))


# ──────────────────────────────────────────────────────────────
#  Redis Implementation
# ──────────────────────────────────────────────────────────────

class RedisJobQueue(JobQueue):
    """
    Durable queue backed by Redis lists, sorted sets and hashes.
    Safe to share between processes; every worker fetches with BLMOVE.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379",
                 key_prefix: str = "systrack", **kwargs):
        super().__init__(**kwargs)
        self._redis_url = redis_url
        self._prefix = key_prefix
        self._redis = None

    def _key(self, queue: str, *parts: str) -> str:
        return ":".join((self._prefix, queue) + parts)

    @asynccontextmanager
    async def _guard(self, op: str):
        from redis.exceptions import ConnectionError as RedisConnectionError
        from redis.exceptions import TimeoutError as RedisTimeoutError

        if self._redis is None:
            raise QueueConnectionError(f"Queue not connected ({op})")
        try:
            yield self._redis
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error("redis_queue_unavailable", op=op, error=str(e))
            raise QueueConnectionError(f"Redis unavailable during {op}: {e}") from e

    async def connect(self):
        import redis.asyncio as aioredis
        from redis.exceptions import ConnectionError as RedisConnectionError

        self._redis = aioredis.from_url(
            self._redis_url,
            decode_responses=True,
            max_connections=20,
        )
        try:
            await self._redis.ping()
        except RedisConnectionError as e:
            raise QueueConnectionError(f"Cannot reach Redis at {self._redis_url}: {e}") from e
        logger.info("redis_queue_connected", url=self._redis_url)

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def enqueue(self, queue, name, data, opts=None):
        opts = opts or JobOptions()
        async with self._guard("enqueue") as r:
            job_id = opts.job_id or str(await r.incr(self._key(queue, "id")))
            job_key = self._key(queue, "job", job_id)

            created = await r.hsetnx(job_key, "id", job_id)
            if not created:
                existing = await self.get_job(queue, job_id)
                logger.info("job_duplicate_ignored", queue=queue, job_id=job_id)
                if existing is not None:
                    return existing

            job = self._build_job(queue, name, data, opts, job_id)
            pipe = r.pipeline(transaction=True)
            pipe.hset(job_key, mapping=job.to_hash())
            if job.state == JobState.DELAYED:
                pipe.zadd(self._key(queue, "delayed"), {job_id: job.timestamp + job.delay_ms})
            else:
                pipe.lpush(self._key(queue, "wait"), job_id)
            await pipe.execute()

        logger.info("job_enqueued", queue=queue, job_id=job_id, name=name, delay_ms=job.delay_ms)
        return job

    async def fetch_next(self, queue, timeout=2.0):
        async with self._guard("fetch_next") as r:
            job_id = await r.blmove(
                self._key(queue, "wait"), self._key(queue, "active"),
                timeout, "RIGHT", "LEFT",
            )
            if job_id is None:
                return None

            now = self._clock()
            job_key = self._key(queue, "job", job_id)
            pipe = r.pipeline(transaction=True)
            pipe.zadd(self._key(queue, "leases"), {job_id: now + self.stall_lease_ms})
            pipe.hset(job_key, mapping={"state": JobState.ACTIVE.value, "processed_on": str(now)})
            pipe.hgetall(job_key)
            *_, raw = await pipe.execute()

            if not raw.get("name"):
                # hash trimmed or never completed; drop the dangling id
                await r.lrem(self._key(queue, "active"), 0, job_id)
                await r.zrem(self._key(queue, "leases"), job_id)
                logger.warning("job_record_missing", queue=queue, job_id=job_id)
                return None
            return QueueJob.from_hash(raw)

    async def _trim(self, r, queue: str, state: str, keep: int):
        list_key = self._key(queue, state)
        stale = await r.lrange(list_key, keep, -1)
        if not stale:
            return
        pipe = r.pipeline(transaction=True)
        for job_id in stale:
            pipe.delete(self._key(queue, "job", job_id))
        pipe.ltrim(list_key, 0, keep - 1)
        await pipe.execute()

    async def _release(self, pipe, job: QueueJob):
        pipe.lrem(self._key(job.queue, "active"), 0, job.id)
        pipe.zrem(self._key(job.queue, "leases"), job.id)

    async def complete(self, job):
        now = self._clock()
        job.state = JobState.COMPLETED
        job.finished_on = now
        async with self._guard("complete") as r:
            pipe = r.pipeline(transaction=True)
            await self._release(pipe, job)
            pipe.hset(self._key(job.queue, "job", job.id), mapping={
                "state": job.state.value, "finished_on": str(now), "progress": str(job.progress),
            })
            pipe.lpush(self._key(job.queue, "completed"), job.id)
            await pipe.execute()
            await self._trim(r, job.queue, "completed", self.keep_completed)

    async def fail(self, job, error, retryable=True):
        now = self._clock()
        job.attempts_made += 1
        job.failed_reason = error
        async with self._guard("fail") as r:
            pipe = r.pipeline(transaction=True)
            await self._release(pipe, job)
            if retryable and job.attempts_made < job.attempts:
                job.state = JobState.DELAYED
                delay = job.backoff_delay_ms()
                pipe.zadd(self._key(job.queue, "delayed"), {job.id: now + delay})
            else:
                job.state = JobState.FAILED
                job.finished_on = now
                pipe.lpush(self._key(job.queue, "failed"), job.id)
            pipe.hset(self._key(job.queue, "job", job.id), mapping={
                "state": job.state.value,
                "attempts_made": str(job.attempts_made),
                "failed_reason": error,
                "finished_on": str(job.finished_on or ""),
            })
            await pipe.execute()
            if job.state == JobState.FAILED:
                await self._trim(r, job.queue, "failed", self.keep_failed)
        return job.state

    async def extend_lease(self, job):
        async with self._guard("extend_lease") as r:
            await r.zadd(self._key(job.queue, "leases"),
                         {job.id: self._clock() + self.stall_lease_ms}, xx=True)

    async def update_progress(self, job, progress):
        job.progress = self._clamp_progress(progress)
        async with self._guard("update_progress") as r:
            await r.hset(self._key(job.queue, "job", job.id), "progress", str(job.progress))

    async def get_job(self, queue, job_id):
        async with self._guard("get_job") as r:
            raw = await r.hgetall(self._key(queue, "job", job_id))
        if not raw or not raw.get("name"):
            return None
        return QueueJob.from_hash(raw)

    async def get_jobs(self, queue, state):
        async with self._guard("get_jobs") as r:
            if state == JobState.DELAYED:
                ids = await r.zrange(self._key(queue, "delayed"), 0, -1)
            else:
                ids = await r.lrange(self._key(queue, state.value if state != JobState.WAITING else "wait"), 0, -1)
            if not ids:
                return []
            pipe = r.pipeline(transaction=False)
            for job_id in ids:
                pipe.hgetall(self._key(queue, "job", job_id))
            raws = await pipe.execute()
        return [QueueJob.from_hash(raw) for raw in raws if raw and raw.get("name")]

    async def get_job_counts(self, queue):
        async with self._guard("get_job_counts") as r:
            pipe = r.pipeline(transaction=False)
            pipe.llen(self._key(queue, "wait"))
            pipe.llen(self._key(queue, "active"))
            pipe.zcard(self._key(queue, "delayed"))
            pipe.llen(self._key(queue, "completed"))
            pipe.llen(self._key(queue, "failed"))
            waiting, active, delayed, completed, failed = await pipe.execute()
        return {
            "waiting": waiting, "active": active, "delayed": delayed,
            "completed": completed, "failed": failed,
        }

    async def retry(self, job):
        async with self._guard("retry") as r:
            removed = await r.lrem(self._key(job.queue, "failed"), 0, job.id)
            if not removed:
                raise QueueError(f"Job {job.id} is not in the failed set of {job.queue}")
            job.state = JobState.WAITING
            job.attempts_made = 0
            job.failed_reason = ""
            job.finished_on = None
            pipe = r.pipeline(transaction=True)
            pipe.hset(self._key(job.queue, "job", job.id), mapping={
                "state": job.state.value, "attempts_made": "0",
                "failed_reason": "", "finished_on": "", "progress": "0",
            })
            pipe.lpush(self._key(job.queue, "wait"), job.id)
            await pipe.execute()
        logger.info("job_retried", queue=job.queue, job_id=job.id)

    async def promote_delayed(self, queue):
        now = self._clock()
        promoted = 0
        async with self._guard("promote_delayed") as r:
            delayed_key = self._key(queue, "delayed")
            ready = await r.zrangebyscore(delayed_key, "-inf", now)
            for job_id in ready:
                # zrem decides the winner when several promoters race
                if not await r.zrem(delayed_key, job_id):
                    continue
                pipe = r.pipeline(transaction=True)
                pipe.hset(self._key(queue, "job", job_id), "state", JobState.WAITING.value)
                pipe.lpush(self._key(queue, "wait"), job_id)
                await pipe.execute()
                promoted += 1
        if promoted:
            logger.info("delayed_jobs_promoted", queue=queue, count=promoted)
        return promoted

    async def requeue_stalled(self, queue):
        now = self._clock()
        requeued = 0
        async with self._guard("requeue_stalled") as r:
            leases_key = self._key(queue, "leases")
            expired = await r.zrangebyscore(leases_key, "-inf", now)
            for job_id in expired:
                if not await r.zrem(leases_key, job_id):
                    continue
                pipe = r.pipeline(transaction=True)
                pipe.lrem(self._key(queue, "active"), 0, job_id)
                pipe.hset(self._key(queue, "job", job_id), "state", JobState.WAITING.value)
                pipe.rpush(self._key(queue, "wait"), job_id)
                await pipe.execute()
                requeued += 1
                logger.warning("job_stalled_requeued", queue=queue, job_id=job_id)
        return requeued


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

@dataclass
class _MemoryQueue:
    jobs: dict[str, QueueJob] = field(default_factory=dict)
    wait: deque = field(default_factory=deque)
    active: dict[str, int] = field(default_factory=dict)      # id → lease deadline
    delayed: dict[str, int] = field(default_factory=dict)     # id → ready at
    completed: deque = field(default_factory=deque)
    failed: deque = field(default_factory=deque)
    next_id: int = 0
    ready: asyncio.Event = field(default_factory=asyncio.Event)


class InMemoryJobQueue(JobQueue):
    """
    Development/test queue with the same semantics as RedisJobQueue.
    Single-process only, nothing survives a restart.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._queues: dict[str, _MemoryQueue] = {}

    def _q(self, name: str) -> _MemoryQueue:
        if name not in self._queues:
            self._queues[name] = _MemoryQueue()
        return self._queues[name]

    async def connect(self):
        logger.info("inmemory_queue_connected")

    async def close(self):
        pass

    async def enqueue(self, queue, name, data, opts=None):
        q = self._q(queue)
        opts = opts or JobOptions()
        if opts.job_id and opts.job_id in q.jobs:
            logger.info("job_duplicate_ignored", queue=queue, job_id=opts.job_id)
            return q.jobs[opts.job_id]

        if opts.job_id:
            job_id = opts.job_id
        else:
            q.next_id += 1
            job_id = str(q.next_id)

        job = self._build_job(queue, name, dict(data), opts, job_id)
        q.jobs[job_id] = job
        if job.state == JobState.DELAYED:
            q.delayed[job_id] = job.timestamp + job.delay_ms
        else:
            q.wait.append(job_id)
            q.ready.set()
        logger.info("job_enqueued", queue=queue, job_id=job_id, name=name, delay_ms=job.delay_ms)
        return job

    async def fetch_next(self, queue, timeout=2.0):
        q = self._q(queue)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            await self.promote_delayed(queue)
            while q.wait:
                job_id = q.wait.popleft()
                job = q.jobs.get(job_id)
                if job is None:
                    continue
                now = self._clock()
                job.state = JobState.ACTIVE
                job.processed_on = now
                q.active[job_id] = now + self.stall_lease_ms
                return job

            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            q.ready.clear()
            try:
                await asyncio.wait_for(q.ready.wait(), timeout=min(remaining, 0.05))
            except asyncio.TimeoutError:
                pass

    def _trim(self, q: _MemoryQueue, ids: deque, keep: int):
        while len(ids) > keep:
            q.jobs.pop(ids.pop(), None)

    async def complete(self, job):
        q = self._q(job.queue)
        q.active.pop(job.id, None)
        job.state = JobState.COMPLETED
        job.finished_on = self._clock()
        q.completed.appendleft(job.id)
        self._trim(q, q.completed, self.keep_completed)

    async def fail(self, job, error, retryable=True):
        q = self._q(job.queue)
        q.active.pop(job.id, None)
        now = self._clock()
        job.attempts_made += 1
        job.failed_reason = error
        if retryable and job.attempts_made < job.attempts:
            job.state = JobState.DELAYED
            q.delayed[job.id] = now + job.backoff_delay_ms()
        else:
            job.state = JobState.FAILED
            job.finished_on = now
            q.failed.appendleft(job.id)
            self._trim(q, q.failed, self.keep_failed)
        return job.state

    async def extend_lease(self, job):
        q = self._q(job.queue)
        if job.id in q.active:
            q.active[job.id] = self._clock() + self.stall_lease_ms

    async def update_progress(self, job, progress):
        job.progress = self._clamp_progress(progress)

    async def get_job(self, queue, job_id):
        return self._q(queue).jobs.get(job_id)

    async def get_jobs(self, queue, state):
        q = self._q(queue)
        ids = {
            JobState.WAITING: list(q.wait),
            JobState.ACTIVE: list(q.active),
            JobState.DELAYED: sorted(q.delayed, key=q.delayed.get),
            JobState.COMPLETED: list(q.completed),
            JobState.FAILED: list(q.failed),
        }[state]
        return [q.jobs[i] for i in ids if i in q.jobs]

    async def get_job_counts(self, queue):
        q = self._q(queue)
        return {
            "waiting": len(q.wait), "active": len(q.active), "delayed": len(q.delayed),
            "completed": len(q.completed), "failed": len(q.failed),
        }

    async def retry(self, job):
        q = self._q(job.queue)
        if job.id not in q.failed:
            raise QueueError(f"Job {job.id} is not in the failed set of {job.queue}")
        q.failed.remove(job.id)
        job.state = JobState.WAITING
        job.attempts_made = 0
        job.failed_reason = ""
        job.finished_on = None
        job.progress = 0
        q.wait.append(job.id)
        q.ready.set()
        logger.info("job_retried", queue=job.queue, job_id=job.id)

    async def promote_delayed(self, queue):
        q = self._q(queue)
        now = self._clock()
        ready = sorted((ts, job_id) for job_id, ts in q.delayed.items() if ts <= now)
        for _, job_id in ready:
            del q.delayed[job_id]
            q.jobs[job_id].state = JobState.WAITING
            q.wait.append(job_id)
        if ready:
            q.ready.set()
            logger.info("delayed_jobs_promoted", queue=queue, count=len(ready))
        return len(ready)

    async def requeue_stalled(self, queue):
        q = self._q(queue)
        now = self._clock()
        expired = [job_id for job_id, deadline in q.active.items() if deadline <= now]
        for job_id in expired:
            del q.active[job_id]
            q.jobs[job_id].state = JobState.WAITING
            q.wait.appendleft(job_id)
            logger.warning("job_stalled_requeued", queue=queue, job_id=job_id)
        if expired:
            q.ready.set()
        return len(expired)


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

_instance: Optional[JobQueue] = None


def create_job_queue(settings=None) -> JobQueue:
    """Factory: create the appropriate queue backend from settings."""
    global _instance
    if _instance:
        return _instance

    if settings is None:
        from config.settings import get_settings
        settings = get_settings()

    qc = settings.queue
    common = dict(
        default_attempts=qc.default_attempts,
        backoff_base_ms=qc.backoff_base_ms,
        keep_completed=qc.keep_completed,
        keep_failed=qc.keep_failed,
        stall_lease_ms=qc.stall_lease_ms,
    )
    if qc.backend == "redis":
        _instance = RedisJobQueue(
            redis_url=settings.redis.url,
            key_prefix=settings.redis.key_prefix,
            **common,
        )
    else:
        _instance = InMemoryJobQueue(**common)

    return _instance


def get_job_queue() -> JobQueue:
    """Return the process-wide queue instance."""
    global _instance
    if _instance is None:
        _instance = create_job_queue()
    return _instance


def reset_job_queue() -> None:
    global _instance
    _instance = None


__all__ = [
    "JobState", "JobOptions", "QueueJob", "Queues",
    "JobQueue", "RedisJobQueue", "InMemoryJobQueue",
    "create_job_queue", "get_job_queue", "reset_job_queue",
]
