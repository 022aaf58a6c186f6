"""
WhatsApp Worker — drains the WhatsApp message and command queues.

Two QueueWorkers with independent concurrency (messages 3, commands 2,
since commands run store lookups and chart rendering before sending).
A send the bot did not confirm in time, or confirmed as failed, raises
RetryableJobError so the queue's backoff applies.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from job_queue.consumer import QueueWorker
from job_queue.errors import RetryableJobError
from job_queue.message_queue import JobQueue, QueueJob, Queues
from models.schemas import WhatsAppCommandJobData, WhatsAppMessageJobData
from whatsapp.trigger_service import TriggerService

logger = structlog.get_logger()


class WhatsAppWorker:

    def __init__(
        self,
        trigger_service: TriggerService,
        queue: JobQueue,
        message_concurrency: int = 3,
        command_concurrency: int = 2,
        shutdown_grace: float = 30.0,
    ):
        self.trigger_service = trigger_service
        self.queue = queue
        self.message_worker = QueueWorker(
            queue, Queues.WHATSAPP_MESSAGE, self.process_message_job,
            concurrency=message_concurrency, shutdown_grace=shutdown_grace,
        )
        self.command_worker = QueueWorker(
            queue, Queues.WHATSAPP_COMMAND, self.process_command_job,
            concurrency=command_concurrency, shutdown_grace=shutdown_grace,
        )

    async def start(self):
        logger.info("whatsapp_worker_starting")
        await self.message_worker.start()
        await self.command_worker.start()

    async def stop(self, grace: Optional[float] = None):
        logger.info("whatsapp_worker_stopping")
        await self.message_worker.stop(grace)
        await self.command_worker.stop(grace)

    async def process_message_job(self, job: QueueJob) -> dict[str, Any]:
        data = WhatsAppMessageJobData.model_validate(job.data)
        logger.info("whatsapp_message_job_started", job_id=job.id, group=data.group_name)

        result = await self.trigger_service.send_trigger_to_group(data.group_name, data.message)
        if not result.success:
            logger.error("whatsapp_message_job_send_failed",
                         job_id=job.id, group=data.group_name, error=result.error)
            raise RetryableJobError(result.error or "Failed to send message")

        await self.queue.update_progress(job, 100)
        logger.info("whatsapp_message_job_sent", job_id=job.id, message_id=result.message_id)
        return result.to_dict()

    async def process_command_job(self, job: QueueJob) -> dict[str, Any]:
        data = WhatsAppCommandJobData.model_validate(job.data)
        logger.info("whatsapp_command_job_started",
                    job_id=job.id, group=data.group_name, command=data.command)

        result = await self.trigger_service.send_trigger_command_to_group(data.group_name, data.command)
        if not result.success:
            logger.error("whatsapp_command_job_send_failed",
                         job_id=job.id, group=data.group_name, error=result.error)
            raise RetryableJobError(result.error or "Failed to send command")

        await self.queue.update_progress(job, 100)
        logger.info("whatsapp_command_job_sent", job_id=job.id, message_id=result.message_id)
        return result.to_dict()
