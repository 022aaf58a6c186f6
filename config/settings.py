"""
Configuration loader for SysTrack.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./systrack.db"        # postgresql:// | mysql:// | sqlite://
    echo: bool = False


@dataclass
class RedisConfig:
    url: str = "redis://localhost:6379"
    key_prefix: str = "systrack"


@dataclass
class QueueConfig:
    backend: str = "redis"              # "redis" for production, "memory" for dev/tests
    default_attempts: int = 3
    backoff_base_ms: int = 2000         # first retry delay, doubled per attempt
    keep_completed: int = 10            # retained completed jobs per queue
    keep_failed: int = 50               # retained terminal-failed jobs per queue
    promote_interval: float = 1.0       # seconds between delayed-set scans
    stall_lease_ms: int = 60_000        # active job lease before it counts as stalled
    shutdown_grace: float = 30.0        # seconds in-flight handlers get on stop


@dataclass
class SchedulerConfig:
    timezone: str = "Asia/Jakarta"
    sync_time: str = "06:30"
    report_time: str = "06:45"
    max_jitter_ms: int = 30_000
    report_group: str = "Digital Architect"
    report_enabled: bool = True


@dataclass
class SyncConfig:
    concurrency: int = 5
    http_timeout: float = 30.0


@dataclass
class WhatsAppConfig:
    message_concurrency: int = 3
    command_concurrency: int = 2
    send_timeout: float = 10.0
    groups_timeout: float = 5.0
    max_retries: int = 3
    cleanup_max_age_hours: int = 24
    allowed_groups: list[str] = field(
        default_factory=lambda: ["Digital Architect", "Test bot", "Harian 8.6"]
    )
    admin_phone: str = ""
    groups_only: bool = True
    client_factory: str = ""            # "package.module:callable" returning a ChatClient
    channel_prefix: str = "whatsapp:trigger"


@dataclass
class Settings:
    app_name: str = "SysTrack"
    debug: bool = False
    log_level: str = "info"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    whatsapp: WhatsAppConfig = field(default_factory=WhatsAppConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} and ${VAR_NAME:-default} patterns with environment values."""
    pattern = re.compile(r'\$\{(\w+)(?::-([^}]*))?\}')
    def replacer(match):
        var_name, default = match.group(1), match.group(2)
        if default is None:
            return os.environ.get(var_name, match.group(0))
        return os.environ.get(var_name) or default
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _section(cls, raw: dict[str, Any]):
    """Build a config dataclass from a raw mapping, ignoring unknown keys."""
    known = {k: v for k, v in (raw or {}).items() if k in cls.__dataclass_fields__}
    return cls(**known)


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "SYSTRACK_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.log_level = raw.get("log_level", settings.log_level)

        if "database" in raw:
            settings.database = _section(DatabaseConfig, raw["database"])
        if "redis" in raw:
            settings.redis = _section(RedisConfig, raw["redis"])
        if "queue" in raw:
            settings.queue = _section(QueueConfig, raw["queue"])
        if "scheduler" in raw:
            settings.scheduler = _section(SchedulerConfig, raw["scheduler"])
        if "sync" in raw:
            settings.sync = _section(SyncConfig, raw["sync"])
        if "whatsapp" in raw:
            settings.whatsapp = _section(WhatsAppConfig, raw["whatsapp"])

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
