#!/usr/bin/env python3
"""
SysTrack process entry point.

Usage:
    python scripts/run.py api          # FastAPI app under uvicorn
    python scripts/run.py scheduler    # daily sync + daily WhatsApp report
    python scripts/run.py worker       # sync worker, WhatsApp workers, promoter
    python scripts/run.py bot          # WhatsApp client + pub/sub bridge

    python scripts/run.py scheduler --run-now   # fire both schedulers once and exit
"""
import argparse
import asyncio
import importlib
import logging
import os
import signal
import sys

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

import structlog

logger = structlog.get_logger()


def configure_logging(level: str):
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=True,
    )


async def _wait_for_shutdown():
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass
    await stop.wait()
    logger.info("shutdown_signal_received")


def _build_broker(settings, pubsub):
    from whatsapp.broker import BrokerChannels, MessageBroker

    wa = settings.whatsapp
    return MessageBroker(
        pubsub,
        channels=BrokerChannels(wa.channel_prefix),
        send_timeout=wa.send_timeout,
        groups_timeout=wa.groups_timeout,
        max_retries=wa.max_retries,
    )


def _build_pubsub(settings):
    from whatsapp.broker import InMemoryPubSub, RedisPubSub

    if settings.queue.backend == "redis":
        return RedisPubSub(settings.redis.url)
    return InMemoryPubSub()


def _build_command_handler(store):
    from whatsapp.commands import CommandHandler
    from whatsapp.health import HealthChecker
    from whatsapp.service_manager import ServiceManager

    return CommandHandler(ServiceManager(store), HealthChecker(store))


# ══════════════════════════════════════════════════════════════
#  Roles
# ══════════════════════════════════════════════════════════════

async def run_scheduler(settings, run_now: bool = False):
    from database.session import close_db
    from database.store import ServiceStore
    from job_queue.message_queue import create_job_queue
    from scheduler import ServiceSyncScheduler, ServiceWhatsappScheduler
    from whatsapp.queue_service import WhatsAppQueueService

    store = ServiceStore()
    queue = create_job_queue(settings)
    await queue.connect()

    schedulers = [ServiceSyncScheduler(store, queue, settings.scheduler)]
    if settings.scheduler.report_enabled:
        schedulers.append(
            ServiceWhatsappScheduler(store, WhatsAppQueueService(queue), settings.scheduler)
        )

    try:
        if run_now:
            for scheduler in schedulers:
                summary = await scheduler.trigger()
                logger.info("scheduler_run_now_finished", scheduler=scheduler.name, summary=summary)
            return

        for scheduler in schedulers:
            await scheduler.start()
        await _wait_for_shutdown()
        for scheduler in schedulers:
            await scheduler.stop()
    finally:
        await queue.close()
        await close_db()


async def _cleanup_loop(broker, interval: float, max_age_hours: float):
    while True:
        await asyncio.sleep(interval)
        broker.cleanup_old_messages(max_age_hours)


async def run_worker(settings):
    from backend.status_api import ResourceStatusClient
    from database.session import close_db
    from database.store import ServiceStore
    from job_queue.consumer import DelayedJobPromoter
    from job_queue.message_queue import Queues, create_job_queue
    from whatsapp.trigger_service import TriggerService
    from workers import ServiceSyncWorker, WhatsAppWorker

    store = ServiceStore()
    queue = create_job_queue(settings)
    pubsub = _build_pubsub(settings)
    broker = _build_broker(settings, pubsub)

    await queue.connect()
    await pubsub.connect()
    await broker.start()

    grace = settings.queue.shutdown_grace
    sync_worker = ServiceSyncWorker(
        store, queue, ResourceStatusClient(timeout=settings.sync.http_timeout),
        concurrency=settings.sync.concurrency, shutdown_grace=grace,
    )
    whatsapp_worker = WhatsAppWorker(
        TriggerService(broker, _build_command_handler(store)), queue,
        message_concurrency=settings.whatsapp.message_concurrency,
        command_concurrency=settings.whatsapp.command_concurrency,
        shutdown_grace=grace,
    )
    promoter = DelayedJobPromoter(
        queue,
        [Queues.SERVICE_SYNC, Queues.WHATSAPP_MESSAGE, Queues.WHATSAPP_COMMAND],
        interval_seconds=settings.queue.promote_interval,
    )

    await promoter.start_background()
    await sync_worker.start()
    await whatsapp_worker.start()
    cleanup = asyncio.create_task(
        _cleanup_loop(broker, 3600, settings.whatsapp.cleanup_max_age_hours)
    )

    try:
        await _wait_for_shutdown()
    finally:
        cleanup.cancel()
        # in-flight handlers finish before the queue connection goes away
        await sync_worker.stop()
        await whatsapp_worker.stop()
        await promoter.stop()
        await broker.stop()
        await pubsub.close()
        await queue.close()
        await close_db()


def load_client_factory(path: str):
    """Resolve 'package.module:callable' to the callable."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Invalid client factory {path!r}, expected 'module:callable'")
    return getattr(importlib.import_module(module_name), attr)


async def run_bot(settings):
    from database.session import close_db
    from database.store import ServiceStore
    from whatsapp.broker import BrokerChannels
    from whatsapp.bot import TriggerBridge, WhatsAppBot

    wa = settings.whatsapp
    if not wa.client_factory:
        raise SystemExit("whatsapp.client_factory is not configured")

    client = load_client_factory(wa.client_factory)(settings)
    store = ServiceStore()
    bot = WhatsAppBot(client, _build_command_handler(store), wa)
    pubsub = _build_pubsub(settings)
    bridge = TriggerBridge(bot, pubsub, BrokerChannels(wa.channel_prefix))

    await pubsub.connect()
    await bridge.start()
    await client.start(bot.handle_message)
    bot.set_ready(True)

    try:
        await _wait_for_shutdown()
    finally:
        bot.set_ready(False)
        await bridge.stop()
        await client.stop()
        await pubsub.close()
        await close_db()


def run_api(settings, host: str, port: int):
    import uvicorn

    uvicorn.run("api.main:app", host=host, port=port, log_level=settings.log_level.lower())


def main():
    parser = argparse.ArgumentParser(description="SysTrack process runner")
    parser.add_argument("role", choices=["api", "scheduler", "worker", "bot"])
    parser.add_argument("--config", help="Path to settings.yaml (defaults to $SYSTRACK_CONFIG)")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--run-now", action="store_true",
                        help="scheduler only: fire once immediately and exit")
    args = parser.parse_args()

    if args.config:
        # the api role reloads settings inside uvicorn
        os.environ["SYSTRACK_CONFIG"] = args.config

    from config.settings import load_settings
    settings = load_settings(args.config)
    configure_logging(settings.log_level)
    logger.info("systrack_starting", role=args.role)

    if args.role == "api":
        run_api(settings, args.host, args.port)
    elif args.role == "scheduler":
        asyncio.run(run_scheduler(settings, run_now=args.run_now))
    elif args.role == "worker":
        asyncio.run(run_worker(settings))
    else:
        asyncio.run(run_bot(settings))


if __name__ == "__main__":
    main()
