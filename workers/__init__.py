"""
Queue workers — the side-effecting consumers of the job queues.
"""
from workers.sync_worker import ServiceSyncWorker
from workers.whatsapp_worker import WhatsAppWorker

__all__ = ["ServiceSyncWorker", "WhatsAppWorker"]
