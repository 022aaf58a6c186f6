"""
Tests — FastAPI application (httpx ASGITransport, in-memory queue and pub/sub)

Covers:
  - /health
  - Sync triggers: all, single (404 for ineligible), queue status
  - WhatsApp triggers: validation, queued jobs, command delay
  - Broker passthroughs: groups, trigger status, retry of failed triggers
  - Job status, queue stats, bulk retry, invalid queue type
"""
import json
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from job_queue.message_queue import JobState, Queues
from models.schemas import ServiceStatus, ServiceType
from whatsapp.broker import BrokerChannels, MessageBroker

CHANNELS = BrokerChannels()


@pytest.fixture
def services(store, queue, pubsub):
    from api.main import AppServices
    from scheduler.sync_service import SyncService
    from whatsapp.commands import CommandHandler
    from whatsapp.health import HealthChecker
    from whatsapp.queue_service import WhatsAppQueueService
    from whatsapp.service_manager import ServiceManager
    from whatsapp.trigger_service import TriggerService

    broker = MessageBroker(pubsub, send_timeout=0.5, groups_timeout=0.1)
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


@pytest_asyncio.fixture
async def client(services):
    from api.main import create_app
    app = create_app(services, manage_db=False)
    # ASGITransport does not run the lifespan
    await services.broker.start()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://localhost") as c:
        yield c
    await services.broker.stop()


class TestHealthEndpoint:

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["queue_backend"] == "InMemoryJobQueue"
        assert body["broker_started"] is True
        assert "timestamp" in body


# ──────────────────────────────────────────────────────────────
#  Sync
# ──────────────────────────────────────────────────────────────

class TestSyncEndpoints:

    @pytest.mark.asyncio
    async def test_sync_all(self, client, queue, add_service):
        await add_service(id=1, name="shop")
        await add_service(id=2, name="blog")
        await add_service(id=3, name="box", type=ServiceType.VPS)

        resp = await client.post("/api/sync/all")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Manual sync triggered for 2 services"
        assert body["data"]["scheduled_jobs"] == 2
        assert {s["service_id"] for s in body["data"]["services"]} == {1, 2}
        assert (await queue.get_job_counts(Queues.SERVICE_SYNC))["waiting"] == 2

    @pytest.mark.asyncio
    async def test_sync_all_without_services(self, client):
        body = (await client.post("/api/sync/all")).json()
        assert body["success"] is True
        assert body["message"] == "No services found for sync"

    @pytest.mark.asyncio
    async def test_sync_single(self, client, queue, add_service):
        await add_service(id=7, name="client-site")

        resp = await client.post("/api/sync/service/7")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["service_id"] == 7
        assert data["service_name"] == "client-site"
        assert data["job_id"].startswith("manual-sync-7-")

        job = await queue.get_job(Queues.SERVICE_SYNC, data["job_id"])
        assert job.data["serviceId"] == 7

    @pytest.mark.asyncio
    async def test_sync_single_ineligible(self, client, add_service):
        await add_service(id=7, status=ServiceStatus.INACTIVE)
        resp = await client.post("/api/sync/service/7")
        assert resp.status_code == 404
        assert resp.json() == {
            "success": False, "message": "Service not found or not configured for sync",
        }
        assert (await client.post("/api/sync/service/404")).status_code == 404

    @pytest.mark.asyncio
    async def test_sync_single_rejects_non_positive_id(self, client):
        assert (await client.post("/api/sync/service/0")).status_code == 422
        assert (await client.post("/api/sync/service/abc")).status_code == 422

    @pytest.mark.asyncio
    async def test_sync_status(self, client, add_service):
        await add_service(id=7)
        await client.post("/api/sync/service/7")

        body = (await client.get("/api/sync/status")).json()
        assert body["success"] is True
        assert body["data"]["waiting"] == 1
        assert body["data"]["jobs"]["waiting"][0]["data"]["serviceId"] == 7


# ──────────────────────────────────────────────────────────────
#  WhatsApp triggers
# ──────────────────────────────────────────────────────────────

class TestTriggerEndpoints:

    @pytest.mark.asyncio
    async def test_queue_group_message(self, client, queue):
        resp = await client.post("/api/whatsapp/trigger/group/message",
                                 json={"group_name": "Ops Room", "message": "Disk at 91%"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Trigger message queued successfully"
        assert body["data"]["group_name"] == "Ops Room"

        job = await queue.get_job(Queues.WHATSAPP_MESSAGE, body["data"]["job_id"])
        assert job.data["message"] == "Disk at 91%"

    @pytest.mark.asyncio
    async def test_message_requires_both_fields(self, client):
        resp = await client.post("/api/whatsapp/trigger/group/message", json={"group_name": "Ops"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Both group_name and message are required."

    @pytest.mark.asyncio
    async def test_queue_group_command_with_delay(self, client, queue):
        resp = await client.post("/api/whatsapp/trigger/group/command", json={
            "group_name": "Ops Room", "command": "!systrack health", "delay_ms": 3000,
        })
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["command"] == "!systrack health"
        job = await queue.get_job(Queues.WHATSAPP_COMMAND, data["job_id"])
        assert job.state == JobState.DELAYED

    @pytest.mark.asyncio
    async def test_command_requires_both_fields(self, client):
        resp = await client.post("/api/whatsapp/trigger/group/command", json={"command": "!systrack"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_queue_failure_is_500(self, client, services):
        async def broken(*args, **kwargs):
            return {"success": False, "error": "redis gone"}

        services.queue_service.queue_message = broken
        resp = await client.post("/api/whatsapp/trigger/group/message",
                                 json={"group_name": "Ops", "message": "hi"})
        assert resp.status_code == 500
        assert resp.json()["message"] == "redis gone"

    @pytest.mark.asyncio
    async def test_groups_timeout_is_empty_list(self, client):
        body = (await client.get("/api/whatsapp/groups")).json()
        assert body == {"success": True, "data": [], "count": 0}

    @pytest.mark.asyncio
    async def test_groups_from_bot(self, client, pubsub):
        async def on_request(channel, raw):
            await pubsub.publish(CHANNELS.groups, json.dumps([{"name": "Ops Room", "id": "1@g.us"}]))

        await pubsub.subscribe([CHANNELS.request], on_request)
        body = (await client.get("/api/whatsapp/groups")).json()
        assert body["count"] == 1
        assert body["data"][0]["name"] == "Ops Room"

    @pytest.mark.asyncio
    async def test_trigger_status_and_listing(self, client, services, pubsub):
        async def on_send(channel, raw):
            data = json.loads(raw)
            await pubsub.publish(CHANNELS.result, json.dumps({"requestId": data["requestId"], "success": True}))

        await pubsub.subscribe([CHANNELS.send], on_send)
        result = await services.trigger_service.send_trigger_to_group("Ops Room", "hi")

        resp = await client.get(f"/api/whatsapp/trigger/status/{result.message_id}")
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "sent"

        listing = (await client.get("/api/whatsapp/trigger/messages")).json()
        assert listing["count"] == 1
        assert listing["data"][0]["id"] == result.message_id

    @pytest.mark.asyncio
    async def test_trigger_status_unknown(self, client):
        resp = await client.get("/api/whatsapp/trigger/status/trigger_0_none")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Message not found."

    @pytest.mark.asyncio
    async def test_retry_failed_triggers(self, client, services, pubsub):
        async def on_send(channel, raw):
            data = json.loads(raw)
            await pubsub.publish(CHANNELS.result, json.dumps({"requestId": data["requestId"], "success": False}))

        await pubsub.subscribe([CHANNELS.send], on_send)
        await services.trigger_service.send_trigger_to_group("Nowhere", "hi")

        body = (await client.post("/api/whatsapp/trigger/retry-failed")).json()
        assert body["success"] is True
        assert body["retried_count"] == 1


# ──────────────────────────────────────────────────────────────
#  WhatsApp jobs
# ──────────────────────────────────────────────────────────────

class TestJobEndpoints:

    @pytest.mark.asyncio
    async def test_job_status(self, client):
        queued = (await client.post("/api/whatsapp/trigger/group/message",
                                    json={"group_name": "Ops", "message": "hi"})).json()
        job_id = queued["data"]["job_id"]

        resp = await client.get(f"/api/whatsapp/job/status/message/{job_id}")
        assert resp.status_code == 200
        assert resp.json()["data"]["state"] == "waiting"

    @pytest.mark.asyncio
    async def test_job_status_not_found(self, client):
        resp = await client.get("/api/whatsapp/job/status/command/12345")
        assert resp.status_code == 404
        assert resp.json()["message"] == "Job not found"

    @pytest.mark.asyncio
    async def test_invalid_queue_type(self, client):
        resp = await client.get("/api/whatsapp/job/status/sms/1")
        assert resp.status_code == 400
        assert resp.json()["detail"] == 'Invalid queue type. Must be "message" or "command".'
        assert (await client.post("/api/whatsapp/queue/retry-failed/sms")).status_code == 400

    @pytest.mark.asyncio
    async def test_queue_stats(self, client):
        await client.post("/api/whatsapp/trigger/group/message", json={"group_name": "Ops", "message": "hi"})
        body = (await client.get("/api/whatsapp/queue/stats")).json()
        assert body["data"]["message_queue"]["waiting"] == 1
        assert body["data"]["command_queue"]["waiting"] == 0

    @pytest.mark.asyncio
    async def test_retry_failed_jobs(self, client, queue):
        await client.post("/api/whatsapp/trigger/group/command",
                          json={"group_name": "Ops", "command": "!systrack health"})
        job = await queue.fetch_next(Queues.WHATSAPP_COMMAND, timeout=0)
        await queue.fail(job, "Timeout waiting for result", retryable=False)

        resp = await client.post("/api/whatsapp/queue/retry-failed/command")
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Retried 1 failed command jobs"
        assert body["data"] == {"retried_count": 1}
        assert job.state == JobState.WAITING
