"""
Service Sync Worker — pulls usage history for one service per job.

Flow per job:
    re-read the service (skip if missing / deleted / not shared hosting / inactive)
    → GET {res_status_api_url}/resource-usage/history
    → drop record ids already stored for the service (one batched query)
    → insert the rest in one batch
    → progress 100

Status API failures and a unique-constraint race with a concurrent run of
the same service raise RetryableJobError; the queue backs off and retries.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError

from backend.status_api import ResourceStatusClient, StatusApiError
from database.store import ServiceStore
from job_queue.consumer import QueueWorker
from job_queue.errors import RetryableJobError
from job_queue.message_queue import JobQueue, QueueJob, Queues
from models.schemas import ServiceStatus, ServiceSyncJobData, ServiceType

logger = structlog.get_logger()


class ServiceSyncWorker:
    """
    Usage:
        worker = ServiceSyncWorker(store, queue, ResourceStatusClient())
        await worker.start()
        ...
        await worker.stop()
    """

    def __init__(
        self,
        store: ServiceStore,
        queue: JobQueue,
        client: Optional[ResourceStatusClient] = None,
        concurrency: int = 5,
        shutdown_grace: float = 30.0,
    ):
        self.store = store
        self.client = client or ResourceStatusClient()
        self.worker = QueueWorker(
            queue, Queues.SERVICE_SYNC, self.process_job,
            concurrency=concurrency, shutdown_grace=shutdown_grace,
        )

    async def start(self):
        logger.info("service_sync_worker_starting")
        await self.worker.start()

    async def stop(self, grace: Optional[float] = None):
        logger.info("service_sync_worker_stopping")
        await self.worker.stop(grace)
        await self.client.close()

    async def process_job(self, job: QueueJob) -> dict[str, Any]:
        data = ServiceSyncJobData.model_validate(job.data)
        service_id, service_name = data.service_id, data.service_name
        log = logger.bind(job_id=job.id, service_id=service_id, service_name=service_name)
        log.info("service_sync_started")

        service = await self.store.get_service(service_id)
        if service is None:
            log.warning("service_sync_skipped", reason="not_found_or_deleted")
            return {"skipped": "not_found"}
        if service.type != ServiceType.SHARED_HOSTING:
            log.info("service_sync_skipped", reason="not_shared_hosting")
            return {"skipped": "wrong_type"}
        if service.status != ServiceStatus.ACTIVE:
            log.info("service_sync_skipped", reason="inactive")
            return {"skipped": "inactive"}

        try:
            records = await self.client.fetch_history(
                service.res_status_api_url, service.res_status_api_key,
            )
        except StatusApiError as e:
            log.error("service_sync_fetch_failed", error=str(e), status_code=e.status_code)
            raise RetryableJobError(str(e)) from e

        existing = await self.store.existing_record_ids(service.id, (int(r["id"]) for r in records))
        new_records = []
        seen = set(existing)
        for record in records:
            record_id = int(record["id"])
            if record_id in seen:
                continue
            # first copy wins when the remote repeats an id
            seen.add(record_id)
            new_records.append(record)

        inserted = 0
        if new_records:
            try:
                inserted = await self.store.insert_logs(service.id, new_records)
            except IntegrityError as e:
                log.warning("service_sync_conflict", error=str(e.orig))
                raise RetryableJobError(f"Concurrent insert for service {service.id}") from e

        await self.worker.queue.update_progress(job, 100)
        log.info("service_sync_finished",
                 fetched=len(records), already_seen=len(existing), inserted=inserted)
        return {"fetched": len(records), "already_seen": len(existing), "inserted": inserted}
