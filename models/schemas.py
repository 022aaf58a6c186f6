"""
Core data models for SysTrack.
Job payloads, remote API shapes and service enums shared across modules.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class ServiceType(IntEnum):
    SERVER = 1
    VPS = 2
    SHARED_HOSTING = 3


class ServiceStatus(IntEnum):
    INACTIVE = 0
    ACTIVE = 1


SERVICE_TYPE_LABELS = {
    ServiceType.SERVER: "🖥️ Server",
    ServiceType.VPS: "☁️ VPS",
    ServiceType.SHARED_HOSTING: "🌐 Shared Hosting",
}


def service_type_label(value: int) -> str:
    try:
        return SERVICE_TYPE_LABELS[ServiceType(value)]
    except ValueError:
        return "❓ Unknown"


def service_status_label(value: int) -> str:
    return "🟢 Active" if value == ServiceStatus.ACTIVE else "🔴 Inactive"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ──────────────────────────────────────────────────────────────
#  Job payloads — camelCase on the wire, snake_case in code
# ──────────────────────────────────────────────────────────────

class _JobPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_job_data(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ServiceSyncJobData(_JobPayload):
    """Payload of a service-sync job."""
    service_id: int = Field(alias="serviceId")
    service_name: str = Field(alias="serviceName")
    service_type: int = Field(alias="serviceType")
    res_status_api_url: str = Field(alias="resStatusApiUrl")
    res_status_api_key: str = Field(alias="resStatusApiKey")


class WhatsAppMessageJobData(_JobPayload):
    group_name: str = Field(alias="groupName")
    message: str
    timestamp: str = Field(default_factory=_now_iso)


class WhatsAppCommandJobData(_JobPayload):
    group_name: str = Field(alias="groupName")
    command: str
    timestamp: str = Field(default_factory=_now_iso)


# ──────────────────────────────────────────────────────────────
#  Remote resource-status API
# ──────────────────────────────────────────────────────────────

class SharedHostingHistoryData(BaseModel):
    """One observation from the resource-status API. Unknown fields are kept."""
    model_config = ConfigDict(extra="allow")

    id: int
    disk_usage_mb: float = 0
    file_count: int = 0
    available_space_mb: float = 0
    available_inode: int = 0
    checked_at: str

    @property
    def checked_at_dt(self) -> datetime:
        value = self.checked_at
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        dt = datetime.fromisoformat(value)
        # naive timestamps are taken as UTC; everything is stored in UTC
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)


class SharedHostingHistoryResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    success: bool
    data: list[SharedHostingHistoryData] = []
    message: Optional[str] = None
