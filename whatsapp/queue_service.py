"""
WhatsApp Queue Service — producer side of the WhatsApp message/command queues.

Used by the API, the report scheduler and scripts. Every method returns a
result dict ({"success": bool, ...}) instead of raising, so callers can
relay the outcome straight to an HTTP response.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Optional

from job_queue.message_queue import JobOptions, JobQueue, Queues, get_job_queue
from models.schemas import WhatsAppCommandJobData, WhatsAppMessageJobData

logger = structlog.get_logger()

QUEUE_TYPES = {
    "message": Queues.WHATSAPP_MESSAGE,
    "command": Queues.WHATSAPP_COMMAND,
}


class WhatsAppQueueService:

    def __init__(self, queue: Optional[JobQueue] = None):
        self.queue = queue or get_job_queue()

    @staticmethod
    def _queue_name(queue_type: str) -> str:
        try:
            return QUEUE_TYPES[queue_type]
        except KeyError:
            raise ValueError(f"Unknown queue type {queue_type!r}, expected 'message' or 'command'")

    async def queue_message(self, group_name: str, message: str) -> dict[str, Any]:
        try:
            payload = WhatsAppMessageJobData(group_name=group_name, message=message)
            job = await self.queue.enqueue(Queues.WHATSAPP_MESSAGE, "send-message", payload.to_job_data())
            logger.info("whatsapp_message_queued", job_id=job.id, group=group_name)
            return {"success": True, "job_id": job.id}
        except Exception as e:
            logger.error("whatsapp_message_queue_failed", group=group_name, error=str(e))
            return {"success": False, "error": str(e)}

    async def queue_command(self, group_name: str, command: str, delay_ms: int = 0,
                            job_id: Optional[str] = None) -> dict[str, Any]:
        try:
            payload = WhatsAppCommandJobData(group_name=group_name, command=command)
            job = await self.queue.enqueue(
                Queues.WHATSAPP_COMMAND, "send-command", payload.to_job_data(),
                JobOptions(delay_ms=delay_ms, job_id=job_id),
            )
            logger.info("whatsapp_command_queued",
                        job_id=job.id, group=group_name, command=command, delay_ms=delay_ms)
            return {"success": True, "job_id": job.id}
        except Exception as e:
            logger.error("whatsapp_command_queue_failed", group=group_name, error=str(e))
            return {"success": False, "error": str(e)}

    async def get_job_status(self, queue_type: str, job_id: str) -> dict[str, Any]:
        try:
            job = await self.queue.get_job(self._queue_name(queue_type), job_id)
            if job is None:
                return {"success": False, "error": "Job not found"}
            return {"success": True, "status": job.to_dict()}
        except Exception as e:
            logger.error("whatsapp_job_status_failed", job_id=job_id, error=str(e))
            return {"success": False, "error": str(e)}

    async def get_queue_stats(self) -> dict[str, Any]:
        try:
            message_stats, command_stats = await asyncio.gather(
                self.queue.get_job_counts(Queues.WHATSAPP_MESSAGE),
                self.queue.get_job_counts(Queues.WHATSAPP_COMMAND),
            )
            return {
                "success": True,
                "stats": {"message_queue": message_stats, "command_queue": command_stats},
            }
        except Exception as e:
            logger.error("whatsapp_queue_stats_failed", error=str(e))
            return {"success": False, "error": str(e)}

    async def retry_failed_jobs(self, queue_type: str) -> dict[str, Any]:
        try:
            queue_name = self._queue_name(queue_type)
            retried = 0
            for job in await self.queue.get_failed(queue_name):
                await self.queue.retry(job)
                retried += 1
            logger.info("whatsapp_failed_jobs_retried", queue=queue_name, count=retried)
            return {"success": True, "retried_count": retried}
        except Exception as e:
            logger.error("whatsapp_retry_failed_jobs_error", queue_type=queue_type, error=str(e))
            return {"success": False, "error": str(e)}
