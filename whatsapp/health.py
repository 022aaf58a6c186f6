"""
Health Checker — system-wide health score and status overview for chat.
"""
from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from database.store import ServiceStore
from models.schemas import ServiceType
from utils.formatting import format_datetime, format_uptime

_PROCESS_STARTED = time.monotonic()


def health_score(total: int, active: int) -> int:
    """Percentage of active services; 100 when there are none."""
    if total <= 0:
        return 100
    return round(active / total * 100)


def health_label(score: int) -> str:
    if score < 50:
        return "🔴 Critical"
    if score < 80:
        return "🟡 Warning"
    return "🟢 Healthy"


class HealthChecker:

    def __init__(self, store: ServiceStore,
                 now: Optional[Callable[[], datetime]] = None,
                 started_at: Optional[float] = None):
        self.store = store
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._started_at = _PROCESS_STARTED if started_at is None else started_at

    async def check_system_health(self) -> str:
        total = await self.store.count_services()
        active = await self.store.count_services(active_only=True)
        inactive = total - active
        recent_logs = await self.store.count_logs_since(self._now() - timedelta(days=1))

        score = health_score(total, active)
        lines = [
            f"*System Health Status: {health_label(score)}*",
            "",
            f"*Health Score:* {score}%",
            f"*Total Services:* {total}",
            f"*Active Services:* {active}",
            f"*Inactive Services:* {inactive}",
            f"*Recent Logs (24h):* {recent_logs}",
            "",
        ]
        if inactive > 0:
            lines.append(f"⚠️ *Warning:* {inactive} service(s) are inactive.")
        if recent_logs == 0:
            lines.append("⚠️ *Warning:* No recent logs found in the last 24 hours.")
        return "\n".join(lines)

    async def get_system_status(self) -> str:
        servers = await self.store.count_services(service_type=ServiceType.SERVER)
        vps = await self.store.count_services(service_type=ServiceType.VPS)
        shared = await self.store.count_services(service_type=ServiceType.SHARED_HOSTING)
        recent_activity = await self.store.count_logs_since(self._now() - timedelta(days=7))

        return "\n".join([
            "*System Status Overview*",
            "",
            "*Service Types:*",
            f"🖥️ Servers: {servers}",
            f"☁️ VPS: {vps}",
            f"🌐 Shared Hosting: {shared}",
            "",
            f"*Recent Activity (7 days):* {recent_activity} log entries",
            "",
            f"*System Uptime:* {format_uptime(time.monotonic() - self._started_at)}",
            f"*Last Check:* {format_datetime(self._now())}",
        ])
