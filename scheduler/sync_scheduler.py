"""
Service Sync Scheduler — daily fan-out of one sync job per eligible service.

Each job gets a random delay in [0, max_jitter_ms) so the remote status APIs
are not all hit at the same instant, and a job id bucketed by calendar day
in the scheduler timezone, so a second fire on the same day is a no-op.
"""
from __future__ import annotations

import asyncio
import random
import structlog
from typing import Any, Optional

from config.settings import SchedulerConfig
from database.models import ServiceRow
from database.store import ServiceStore
from job_queue.message_queue import JobOptions, JobQueue, QueueJob, Queues
from models.schemas import ServiceSyncJobData
from scheduler.base import DailyJobScheduler

logger = structlog.get_logger()


def build_sync_payload(service: ServiceRow) -> dict[str, Any]:
    return ServiceSyncJobData(
        service_id=service.id,
        service_name=service.name,
        service_type=service.type,
        res_status_api_url=service.res_status_api_url or "",
        res_status_api_key=service.res_status_api_key or "",
    ).to_job_data()


class ServiceSyncScheduler(DailyJobScheduler):
    name = "service_sync"

    def __init__(self, store: ServiceStore, queue: JobQueue,
                 config: Optional[SchedulerConfig] = None,
                 rng: Optional[random.Random] = None, **kwargs):
        config = config or SchedulerConfig()
        super().__init__(config.sync_time, config.timezone, **kwargs)
        self.store = store
        self.queue = queue
        self.max_jitter_ms = config.max_jitter_ms
        self.rng = rng or random.Random()

    async def _schedule_one(self, service: ServiceRow, day: str) -> QueueJob:
        delay = int(self.rng.random() * self.max_jitter_ms)
        job = await self.queue.enqueue(
            Queues.SERVICE_SYNC,
            f"sync-service-{service.id}",
            build_sync_payload(service),
            JobOptions(delay_ms=delay, job_id=f"daily-sync-{service.id}-{day}"),
        )
        logger.info("sync_job_scheduled",
                    service_id=service.id, service_name=service.name,
                    job_id=job.id, delay_ms=delay)
        return job

    async def run(self) -> dict[str, Any]:
        services = await self.store.list_sync_eligible()
        logger.info("sync_targets_found", count=len(services))
        if not services:
            return {"scheduled": 0, "failed": 0, "errors": []}

        day = self._now(self.tz).strftime("%Y%m%d")
        results = await asyncio.gather(
            *(self._schedule_one(s, day) for s in services),
            return_exceptions=True,
        )

        errors = [
            f"service {service.id}: {result}"
            for service, result in zip(services, results)
            if isinstance(result, BaseException)
        ]
        summary = {
            "scheduled": len(services) - len(errors),
            "failed": len(errors),
            "errors": errors,
        }
        logger.info("sync_scheduling_completed",
                    scheduled=summary["scheduled"], failed=summary["failed"])
        if errors:
            logger.error("sync_scheduling_failures", errors=errors)
        return summary
