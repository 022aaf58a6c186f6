"""
Service Manager — chat-formatted views of services and their usage logs.

"Not found" is a normal reply here, never an exception; store errors
propagate to the command handler, which turns them into an apology.
"""
from __future__ import annotations

import json
import structlog
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from database.models import ServiceLogRow, ServiceRow
from database.store import ServiceStore
from models.schemas import ServiceType, service_status_label, service_type_label
from utils.domain import domain_from_res_api_url
from utils.formatting import format_date, format_megabytes, percentage

logger = structlog.get_logger()

REPORT_LOG_LIMIT = 7


@dataclass
class ServiceReport:
    """Snapshot used for the service-status reply and its chart."""
    id: int
    name: str
    domain: str
    status: str
    logs: list[dict[str, Any]] = field(default_factory=list)   # newest first

    @property
    def latest(self) -> Optional[dict[str, Any]]:
        return self.logs[0] if self.logs else None


def _log_entry(row: ServiceLogRow) -> dict[str, Any]:
    data = row.data or {}
    return {
        "id": row.id,
        "record_id": row.record_id,
        "disk_usage_mb": data.get("disk_usage_mb"),
        "file_count": data.get("file_count"),
        "available_space_mb": data.get("available_space_mb"),
        "available_inode": data.get("available_inode"),
        "checked_at": data.get("checked_at"),
        "recorded_at": row.recorded_at,
    }


class ServiceManager:

    def __init__(self, store: ServiceStore):
        self.store = store

    async def get_all_services(self) -> str:
        services = await self.store.list_services()
        if not services:
            return "No services found."

        lines = [f"Found {len(services)} service(s):", ""]
        for service in services:
            lines += [
                f"*{service.name}* (ID: {service.id})",
                f"Type: {service_type_label(service.type)}",
                f"Status: {service_status_label(service.status)}",
                f"Description: {service.description or '-'}",
                f"Created: {format_date(service.created_at)}",
                "",
            ]
        return "\n".join(lines)

    async def get_service_details(self, identifier: str) -> str:
        service = await self.store.find_service(identifier)
        if service is None:
            return f'Service "{identifier}" not found.'

        return "\n".join([
            f"*{service.name}* (ID: {service.id})",
            "",
            f"*Description:* {service.description or '-'}",
            f"*Type:* {service_type_label(service.type)}",
            f"*Status:* {service_status_label(service.status)}",
            f"*API URL:* {service.res_status_api_url or '-'}",
            f"*Created:* {format_date(service.created_at)}",
            f"*Updated:* {format_date(service.updated_at)}",
        ])

    async def get_service_logs(self, identifier: str, limit: int = 10) -> str:
        service = await self.store.find_service(identifier)
        if service is None:
            return f'Service "{identifier}" not found.'

        logs = await self.store.recent_logs(service.id, limit=limit)
        if not logs:
            return f'No logs found for service "{service.name}".'

        lines = [f"*Logs for {service.name}* ({len(logs)} recent entries)", ""]
        for index, log in enumerate(logs, start=1):
            lines.append(f"*Log {index}* (ID: {log.id})")
            lines.append(f"Recorded: {format_date(log.recorded_at)}")
            lines += self._format_log_data(service, log.data or {})
            lines.append("")
        return "\n".join(lines)

    @staticmethod
    def _format_log_data(service: ServiceRow, data: dict[str, Any]) -> list[str]:
        if service.type != ServiceType.SHARED_HOSTING:
            return [f"Data: {json.dumps(data, indent=2)}"]
        disk, space = data.get("disk_usage_mb"), data.get("available_space_mb")
        files, inodes = data.get("file_count"), data.get("available_inode")
        return [
            f"Disk: {format_megabytes(disk)} / {format_megabytes(space)} "
            f"({percentage(disk, space, 2)}% used)",
            f"Inodes: {files} / {inodes} ({percentage(files, inodes, 2)}% used)",
        ]

    async def get_service_report(self, identifier: str) -> Optional[ServiceReport]:
        service = await self.store.find_service(identifier)
        if service is None:
            return None
        logs = await self.store.recent_logs(service.id, limit=REPORT_LOG_LIMIT)
        return ServiceReport(
            id=service.id,
            name=service.name,
            domain=domain_from_res_api_url(service.res_status_api_url),
            status=service_status_label(service.status),
            logs=[_log_entry(row) for row in logs],
        )
