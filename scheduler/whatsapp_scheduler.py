"""
Service WhatsApp Scheduler — daily status report per eligible service.

Runs after the sync scheduler so the report includes that morning's records.
Each service becomes one `!systrack service-status {id}` command job sent
to the configured report group.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Optional

from config.settings import SchedulerConfig
from database.store import ServiceStore
from scheduler.base import DailyJobScheduler
from whatsapp.queue_service import WhatsAppQueueService

logger = structlog.get_logger()


class ServiceWhatsappScheduler(DailyJobScheduler):
    name = "service_whatsapp"

    def __init__(self, store: ServiceStore, queue_service: WhatsAppQueueService,
                 config: Optional[SchedulerConfig] = None, **kwargs):
        config = config or SchedulerConfig()
        super().__init__(config.report_time, config.timezone, **kwargs)
        self.store = store
        self.queue_service = queue_service
        self.group = config.report_group

    async def run(self) -> dict[str, Any]:
        services = await self.store.list_sync_eligible()
        logger.info("report_targets_found", count=len(services), group=self.group)
        if not services:
            return {"scheduled": 0, "failed": 0, "errors": []}

        # one report per service per day, however often the body fires
        day = self._now(self.tz).strftime("%Y%m%d")
        results = await asyncio.gather(*(
            self.queue_service.queue_command(
                self.group, f"!systrack service-status {s.id}", job_id=f"report-{s.id}-{day}",
            )
            for s in services
        ))
        errors = [
            f"service {service.id}: {result.get('error')}"
            for service, result in zip(services, results)
            if not result.get("success")
        ]
        summary = {
            "scheduled": len(services) - len(errors),
            "failed": len(errors),
            "errors": errors,
        }
        logger.info("report_scheduling_completed",
                    scheduled=summary["scheduled"], failed=summary["failed"])
        if errors:
            logger.error("report_scheduling_failures", errors=errors)
        return summary
