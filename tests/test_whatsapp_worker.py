"""
Tests — WhatsApp queue producer and worker

Covers:
  - WhatsAppQueueService: enqueue message/command, delayed command, job status,
    queue stats, retrying terminal-failed jobs, invalid queue type
  - WhatsAppWorker: successful sends complete with progress 100,
    unconfirmed sends are retried with backoff
  - TriggerService: command replies relayed with footer and chart
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from job_queue.message_queue import JobState, Queues
from whatsapp.broker import SendResult
from whatsapp.queue_service import WhatsAppQueueService


@pytest.fixture
def queue_service(queue):
    return WhatsAppQueueService(queue)


@pytest.fixture
def trigger_service():
    service = AsyncMock()
    service.send_trigger_to_group.return_value = SendResult(success=True, message_id="trigger_1_ab")
    service.send_trigger_command_to_group.return_value = SendResult(success=True, message_id="trigger_2_cd")
    return service


@pytest.fixture
def whatsapp_worker(trigger_service, queue):
    from workers import WhatsAppWorker
    return WhatsAppWorker(trigger_service, queue)


# ──────────────────────────────────────────────────────────────
#  Producer
# ──────────────────────────────────────────────────────────────

class TestWhatsAppQueueService:

    @pytest.mark.asyncio
    async def test_queue_message(self, queue_service, queue):
        result = await queue_service.queue_message("Ops Room", "Disk at 91%")
        assert result["success"] is True

        job = await queue.get_job(Queues.WHATSAPP_MESSAGE, result["job_id"])
        assert job.name == "send-message"
        assert job.data["groupName"] == "Ops Room"
        assert job.data["message"] == "Disk at 91%"
        assert "timestamp" in job.data
        assert job.state == JobState.WAITING

    @pytest.mark.asyncio
    async def test_queue_command_with_delay(self, queue_service, queue, clock):
        result = await queue_service.queue_command("Ops Room", "!systrack health", delay_ms=5000)
        job = await queue.get_job(Queues.WHATSAPP_COMMAND, result["job_id"])
        assert job.name == "send-command"
        assert job.data["command"] == "!systrack health"
        assert job.state == JobState.DELAYED

        assert await queue.fetch_next(Queues.WHATSAPP_COMMAND, timeout=0) is None
        clock.advance(5000)
        fetched = await queue.fetch_next(Queues.WHATSAPP_COMMAND, timeout=0)
        assert fetched.id == job.id

    @pytest.mark.asyncio
    async def test_enqueue_failure_is_reported(self, queue):
        queue.enqueue = AsyncMock(side_effect=ConnectionError("redis gone"))
        result = await WhatsAppQueueService(queue).queue_message("Ops", "hi")
        assert result == {"success": False, "error": "redis gone"}

    @pytest.mark.asyncio
    async def test_job_status(self, queue_service):
        queued = await queue_service.queue_message("Ops", "hi")
        result = await queue_service.get_job_status("message", queued["job_id"])
        assert result["success"] is True
        assert result["status"]["id"] == queued["job_id"]
        assert result["status"]["state"] == "waiting"

    @pytest.mark.asyncio
    async def test_job_status_not_found(self, queue_service):
        result = await queue_service.get_job_status("command", "404")
        assert result == {"success": False, "error": "Job not found"}

    @pytest.mark.asyncio
    async def test_invalid_queue_type(self, queue_service):
        result = await queue_service.get_job_status("sms", "1")
        assert result["success"] is False
        assert "Unknown queue type" in result["error"]

    @pytest.mark.asyncio
    async def test_queue_stats(self, queue_service):
        await queue_service.queue_message("Ops", "one")
        await queue_service.queue_message("Ops", "two")
        await queue_service.queue_command("Ops", "!systrack status", delay_ms=1000)

        result = await queue_service.get_queue_stats()
        assert result["success"] is True
        assert result["stats"]["message_queue"]["waiting"] == 2
        assert result["stats"]["command_queue"]["delayed"] == 1
        assert result["stats"]["command_queue"]["waiting"] == 0

    @pytest.mark.asyncio
    async def test_retry_failed_jobs(self, queue_service, queue):
        await queue_service.queue_message("Ops", "hi")
        job = await queue.fetch_next(Queues.WHATSAPP_MESSAGE, timeout=0)
        await queue.fail(job, "boom", retryable=False)

        result = await queue_service.retry_failed_jobs("message")
        assert result == {"success": True, "retried_count": 1}
        assert job.state == JobState.WAITING
        assert job.attempts_made == 0
        assert await queue.get_failed(Queues.WHATSAPP_MESSAGE) == []

    @pytest.mark.asyncio
    async def test_retry_failed_jobs_empty(self, queue_service):
        assert await queue_service.retry_failed_jobs("command") == {"success": True, "retried_count": 0}


# ──────────────────────────────────────────────────────────────
#  Worker
# ──────────────────────────────────────────────────────────────

class TestWhatsAppWorker:

    @pytest.mark.asyncio
    async def test_message_job_sent(self, whatsapp_worker, trigger_service, queue_service, queue):
        await queue_service.queue_message("Ops Room", "Disk at 91%")
        job = await queue.fetch_next(Queues.WHATSAPP_MESSAGE, timeout=0)

        state = await whatsapp_worker.message_worker.process(job)

        assert state == JobState.COMPLETED
        assert job.progress == 100
        trigger_service.send_trigger_to_group.assert_awaited_once_with("Ops Room", "Disk at 91%")

    @pytest.mark.asyncio
    async def test_command_job_sent(self, whatsapp_worker, trigger_service, queue_service, queue):
        await queue_service.queue_command("Ops Room", "!systrack health")
        job = await queue.fetch_next(Queues.WHATSAPP_COMMAND, timeout=0)

        result = await whatsapp_worker.process_command_job(job)

        assert result == {"success": True, "message_id": "trigger_2_cd", "error": None}
        trigger_service.send_trigger_command_to_group.assert_awaited_once_with(
            "Ops Room", "!systrack health",
        )

    @pytest.mark.asyncio
    async def test_unconfirmed_send_is_retried(self, whatsapp_worker, trigger_service, queue_service, queue):
        trigger_service.send_trigger_to_group.return_value = SendResult(
            success=False, message_id="trigger_3_ef", error="Timeout waiting for result",
        )
        await queue_service.queue_message("Ops Room", "hi")
        job = await queue.fetch_next(Queues.WHATSAPP_MESSAGE, timeout=0)

        state = await whatsapp_worker.message_worker.process(job)

        assert state == JobState.DELAYED
        assert job.attempts_made == 1
        assert job.failed_reason == "Timeout waiting for result"
        assert job.progress == 0

    @pytest.mark.asyncio
    async def test_failed_command_exhausts_attempts(
        self, whatsapp_worker, trigger_service, queue_service, queue, clock,
    ):
        trigger_service.send_trigger_command_to_group.return_value = SendResult(success=False)
        await queue_service.queue_command("Ops Room", "!systrack status")

        states = []
        for _ in range(3):
            clock.advance(60_000)
            job = await queue.fetch_next(Queues.WHATSAPP_COMMAND, timeout=0)
            states.append(await whatsapp_worker.command_worker.process(job))

        assert states == [JobState.DELAYED, JobState.DELAYED, JobState.FAILED]
        assert job.failed_reason == "Failed to send command"

    @pytest.mark.asyncio
    async def test_start_and_stop(self, whatsapp_worker):
        await whatsapp_worker.start()
        assert whatsapp_worker.message_worker.running
        assert whatsapp_worker.command_worker.running
        await whatsapp_worker.stop(grace=0)
        assert not whatsapp_worker.message_worker.running
        assert not whatsapp_worker.command_worker.running


# ──────────────────────────────────────────────────────────────
#  Trigger service
# ──────────────────────────────────────────────────────────────

class TestTriggerService:

    @pytest.mark.asyncio
    async def test_command_reply_gets_footer_and_image(self):
        from whatsapp.commands import CommandReply
        from whatsapp.trigger_service import TriggerService, command_footer

        broker = MagicMock()
        broker.send_trigger_to_group = AsyncMock(return_value=SendResult(success=True, message_id="m1"))
        handler = AsyncMock()
        handler.handle_command.return_value = CommandReply("report body", b"png")

        result = await TriggerService(broker, handler).send_trigger_command_to_group(
            "Ops Room", "!systrack service-status 7",
        )

        assert result.success
        handler.handle_command.assert_awaited_once_with("!systrack service-status 7")
        broker.send_trigger_to_group.assert_awaited_once_with(
            "Ops Room", "report body" + command_footer("Ops Room"), b"png",
        )
        assert command_footer("Ops Room") == "\n\n_Response for Ops Room from SysTrack WhatsApp Bot_"

    @pytest.mark.asyncio
    async def test_empty_reply_is_not_sent(self):
        from whatsapp.commands import CommandReply
        from whatsapp.trigger_service import TriggerService

        broker = MagicMock()
        broker.send_trigger_to_group = AsyncMock()
        handler = AsyncMock()
        handler.handle_command.return_value = CommandReply("")

        result = await TriggerService(broker, handler).send_trigger_command_to_group("Ops", "!systrack")
        assert result.success is False
        assert result.error == "Failed to handle command."
        broker.send_trigger_to_group.assert_not_awaited()
