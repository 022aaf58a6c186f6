"""
Schedulers — daily producers for the sync and WhatsApp report queues.
"""
from scheduler.base import DailyJobScheduler, SchedulerState, parse_time_of_day
from scheduler.sync_scheduler import ServiceSyncScheduler, build_sync_payload
from scheduler.sync_service import SyncService, is_sync_eligible
from scheduler.whatsapp_scheduler import ServiceWhatsappScheduler

__all__ = [
    "DailyJobScheduler", "SchedulerState", "parse_time_of_day",
    "ServiceSyncScheduler", "ServiceWhatsappScheduler", "build_sync_payload",
    "SyncService", "is_sync_eligible",
]
