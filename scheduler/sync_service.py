"""
Manual sync triggers and sync-queue inspection, used by the API.
"""
from __future__ import annotations

import structlog
import time
from typing import Any, Optional

from database.models import ServiceRow
from database.store import ServiceStore
from job_queue.message_queue import JobOptions, JobQueue, JobState, QueueJob, Queues
from models.schemas import ServiceStatus, ServiceType
from scheduler.sync_scheduler import build_sync_payload

logger = structlog.get_logger()


def is_sync_eligible(service: Optional[ServiceRow]) -> bool:
    return (
        service is not None
        and not service.is_deleted
        and service.type == ServiceType.SHARED_HOSTING
        and service.status == ServiceStatus.ACTIVE
    )


class SyncService:

    def __init__(self, store: ServiceStore, queue: JobQueue):
        self.store = store
        self.queue = queue

    async def _enqueue_manual(self, service: ServiceRow) -> QueueJob:
        ms = int(time.time() * 1000)
        return await self.queue.enqueue(
            Queues.SERVICE_SYNC,
            f"manual-sync-service-{service.id}",
            build_sync_payload(service),
            JobOptions(job_id=f"manual-sync-{service.id}-{ms}"),
        )

    async def enqueue_service_sync(self, service_id: int) -> Optional[QueueJob]:
        """Queue an immediate sync for one service. None if it is not eligible."""
        service = await self.store.get_service(service_id)
        if not is_sync_eligible(service):
            logger.info("manual_sync_not_eligible", service_id=service_id)
            return None
        job = await self._enqueue_manual(service)
        logger.info("manual_sync_triggered", service_id=service.id,
                    service_name=service.name, job_id=job.id)
        return job

    async def enqueue_all(self) -> dict[str, Any]:
        services = await self.store.list_sync_eligible()
        scheduled: list[dict[str, Any]] = []
        failed = 0
        for service in services:
            try:
                job = await self._enqueue_manual(service)
            except Exception as e:
                failed += 1
                logger.error("manual_sync_enqueue_failed", service_id=service.id, error=str(e))
                continue
            scheduled.append({"service_id": service.id, "service_name": service.name, "job_id": job.id})

        logger.info("manual_sync_all_completed", scheduled=len(scheduled), failed=failed)
        return {"scheduled_jobs": len(scheduled), "failed_jobs": failed, "services": scheduled}

    async def get_sync_queue_status(self) -> dict[str, Any]:
        counts = await self.queue.get_job_counts(Queues.SERVICE_SYNC)
        waiting = await self.queue.get_jobs(Queues.SERVICE_SYNC, JobState.WAITING)
        active = await self.queue.get_jobs(Queues.SERVICE_SYNC, JobState.ACTIVE)
        failed = await self.queue.get_failed(Queues.SERVICE_SYNC)
        return {
            "queue": Queues.SERVICE_SYNC,
            **counts,
            "jobs": {
                "waiting": [{"id": j.id, "name": j.name, "data": j.data} for j in waiting],
                "active": [{"id": j.id, "name": j.name, "data": j.data} for j in active],
                "failed": [{"id": j.id, "name": j.name, "error": j.failed_reason} for j in failed],
            },
        }
