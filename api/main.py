"""
FastAPI Application — sync triggers, WhatsApp triggers and job inspection.

Provides:
- Manual sync of all / one service, sync queue status
- Queue a WhatsApp message or command for a group
- Broker passthroughs: available groups, trigger message status, retry
- WhatsApp job status, queue stats and bulk retry of failed jobs
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, HTTPException, Path
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config.settings import Settings, get_settings
from database.session import close_db
from database.store import ServiceStore
from job_queue.message_queue import JobQueue, create_job_queue
from scheduler.sync_service import SyncService
from whatsapp.broker import BrokerChannels, InMemoryPubSub, MessageBroker, PubSub, RedisPubSub
from whatsapp.commands import CommandHandler
from whatsapp.health import HealthChecker
from whatsapp.queue_service import QUEUE_TYPES, WhatsAppQueueService
from whatsapp.service_manager import ServiceManager
from whatsapp.trigger_service import TriggerService

logger = structlog.get_logger()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ──────────────────────────────────────────────────────────────
#  Bootstrap
# ──────────────────────────────────────────────────────────────

@dataclass
class AppServices:
    store: ServiceStore
    queue: JobQueue
    pubsub: PubSub
    broker: MessageBroker
    sync: SyncService
    queue_service: WhatsAppQueueService
    trigger_service: TriggerService


def build_services(settings: Optional[Settings] = None) -> AppServices:
    settings = settings or get_settings()
    wa = settings.whatsapp

    store = ServiceStore()
    queue = create_job_queue(settings)
    pubsub: PubSub = (
        RedisPubSub(settings.redis.url) if settings.queue.backend == "redis" else InMemoryPubSub()
    )
    broker = MessageBroker(
        pubsub,
        channels=BrokerChannels(wa.channel_prefix),
        send_timeout=wa.send_timeout,
        groups_timeout=wa.groups_timeout,
        max_retries=wa.max_retries,
    )
    handler = CommandHandler(ServiceManager(store), HealthChecker(store))
    return AppServices(
        store=store,
        queue=queue,
        pubsub=pubsub,
        broker=broker,
        sync=SyncService(store, queue),
        queue_service=WhatsAppQueueService(queue),
        trigger_service=TriggerService(broker, handler),
    )


# ──────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────

class GroupMessageRequest(BaseModel):
    group_name: str = ""
    message: str = ""


class GroupCommandRequest(BaseModel):
    group_name: str = ""
    command: str = ""
    delay_ms: int = 0


def _check_queue_type(queue_type: str):
    if queue_type not in QUEUE_TYPES:
        raise HTTPException(400, 'Invalid queue type. Must be "message" or "command".')


def create_app(services: Optional[AppServices] = None, manage_db: bool = True) -> FastAPI:
    svc = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await svc.queue.connect()
        await svc.pubsub.connect()
        await svc.broker.start()
        logger.info("systrack_api_started", queue_backend=type(svc.queue).__name__)
        yield
        await svc.broker.stop()
        await svc.pubsub.close()
        await svc.queue.close()
        if manage_db:
            await close_db()
        logger.info("systrack_api_stopped")

    app = FastAPI(
        title="SysTrack API",
        description="Service resource tracking with WhatsApp reporting",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = svc

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ══════════════════════════════════════════════════════════════
    #  HEALTH
    # ══════════════════════════════════════════════════════════════

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": _now_iso(),
            "queue_backend": type(svc.queue).__name__,
            "broker_started": svc.broker.started,
        }

    # ══════════════════════════════════════════════════════════════
    #  SYNC
    # ══════════════════════════════════════════════════════════════

    @app.post("/api/sync/all")
    async def sync_all():
        logger.info("manual_sync_all_requested")
        result = await svc.sync.enqueue_all()
        if result["scheduled_jobs"] == 0 and result["failed_jobs"] == 0:
            return {"success": True, "message": "No services found for sync", "data": result}
        return {
            "success": True,
            "message": f"Manual sync triggered for {result['scheduled_jobs']} services",
            "data": result,
        }

    @app.post("/api/sync/service/{service_id}")
    async def sync_service(service_id: int = Path(gt=0)):
        job = await svc.sync.enqueue_service_sync(service_id)
        if job is None:
            return JSONResponse(
                {"success": False, "message": "Service not found or not configured for sync"},
                status_code=404,
            )
        return {
            "success": True,
            "message": f"Manual sync triggered for service: {job.data.get('serviceName')}",
            "data": {
                "service_id": service_id,
                "service_name": job.data.get("serviceName"),
                "job_id": job.id,
            },
        }

    @app.get("/api/sync/status")
    async def sync_status():
        return {"success": True, "data": await svc.sync.get_sync_queue_status()}

    # ══════════════════════════════════════════════════════════════
    #  WHATSAPP TRIGGERS
    # ══════════════════════════════════════════════════════════════

    @app.post("/api/whatsapp/trigger/group/message")
    async def trigger_group_message(req: GroupMessageRequest):
        if not req.group_name or not req.message:
            raise HTTPException(400, "Both group_name and message are required.")
        result = await svc.queue_service.queue_message(req.group_name, req.message)
        if not result["success"]:
            return JSONResponse({
                "success": False,
                "message": result.get("error") or "Failed to queue trigger message",
                "data": {"group_name": req.group_name, "timestamp": _now_iso()},
            }, status_code=500)
        return {
            "success": True,
            "message": "Trigger message queued successfully",
            "data": {"job_id": result["job_id"], "group_name": req.group_name, "timestamp": _now_iso()},
        }

    @app.post("/api/whatsapp/trigger/group/command")
    async def trigger_group_command(req: GroupCommandRequest):
        if not req.group_name or not req.command:
            raise HTTPException(400, "Both group_name and command are required.")
        result = await svc.queue_service.queue_command(req.group_name, req.command, req.delay_ms)
        if not result["success"]:
            return JSONResponse({
                "success": False,
                "message": result.get("error") or "Failed to queue trigger command",
                "data": {"group_name": req.group_name, "timestamp": _now_iso()},
            }, status_code=500)
        return {
            "success": True,
            "message": "Trigger command queued successfully",
            "data": {
                "job_id": result["job_id"], "group_name": req.group_name,
                "command": req.command, "timestamp": _now_iso(),
            },
        }

    @app.get("/api/whatsapp/groups")
    async def list_groups():
        groups = await svc.trigger_service.get_available_groups()
        return {"success": True, "data": groups, "count": len(groups)}

    @app.get("/api/whatsapp/trigger/status/{message_id}")
    async def trigger_status(message_id: str):
        message = svc.trigger_service.get_message_status(message_id)
        if message is None:
            raise HTTPException(404, "Message not found.")
        return {"success": True, "data": message.to_dict()}

    @app.get("/api/whatsapp/trigger/messages")
    async def trigger_messages():
        messages = svc.trigger_service.get_all_messages()
        return {"success": True, "data": [m.to_dict() for m in messages], "count": len(messages)}

    @app.post("/api/whatsapp/trigger/retry-failed")
    async def retry_failed_triggers():
        retried = await svc.trigger_service.retry_failed_messages()
        return {"success": True, "message": "Failed messages retry initiated", "retried_count": retried}

    # ══════════════════════════════════════════════════════════════
    #  WHATSAPP JOBS
    # ══════════════════════════════════════════════════════════════

    @app.get("/api/whatsapp/job/status/{queue_type}/{job_id}")
    async def whatsapp_job_status(queue_type: str, job_id: str):
        _check_queue_type(queue_type)
        result = await svc.queue_service.get_job_status(queue_type, job_id)
        if not result["success"]:
            status = 404 if result.get("error") == "Job not found" else 500
            return JSONResponse({"success": False, "message": result.get("error")}, status_code=status)
        return {"success": True, "data": result["status"]}

    @app.get("/api/whatsapp/queue/stats")
    async def whatsapp_queue_stats():
        result = await svc.queue_service.get_queue_stats()
        if not result["success"]:
            return JSONResponse({"success": False, "message": result.get("error")}, status_code=500)
        return {"success": True, "data": result["stats"]}

    @app.post("/api/whatsapp/queue/retry-failed/{queue_type}")
    async def whatsapp_retry_failed(queue_type: str):
        _check_queue_type(queue_type)
        result = await svc.queue_service.retry_failed_jobs(queue_type)
        if not result["success"]:
            return JSONResponse({"success": False, "message": result.get("error")}, status_code=500)
        return {
            "success": True,
            "message": f"Retried {result['retried_count']} failed {queue_type} jobs",
            "data": {"retried_count": result["retried_count"]},
        }

    return app


app = create_app()


# ══════════════════════════════════════════════════════════════
#  Entry Point
# ══════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
