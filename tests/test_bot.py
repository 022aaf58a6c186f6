"""
Tests — WhatsApp Bot and TriggerBridge

Covers:
  - Inbound filters: readiness, message type, prefix, allow-list,
    groups_only, admin restriction, welcome trigger
  - Command replies with sender footer and chart image
  - Group lookup (case-insensitive) and group listing
  - TriggerBridge end to end with MessageBroker over in-memory pub/sub
"""
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from config.settings import WhatsAppConfig
from whatsapp.bot import (
    ADMIN_ONLY_REPLY, DISABLED_REPLY, REQUEST_ERROR_REPLY, WELCOME_MESSAGE,
    ChatInfo, IncomingMessage, TriggerBridge, WhatsAppBot,
)
from whatsapp.commands import CommandReply

OPS = ChatInfo(id="120363@g.us", name="Ops Room", is_group=True)
OTHER = ChatInfo(id="999@g.us", name="Family", is_group=True)
DM = ChatInfo(id="62811@c.us", name="Budi", is_group=False)


class FakeChatClient:
    """Records outbound traffic; serves a fixed chat list."""

    def __init__(self, chats=None):
        self.chats = list(chats or [OPS, OTHER, DM])
        self.texts: list[tuple[str, str]] = []
        self.images: list[tuple[str, bytes, str]] = []
        self.fail_images = False

    async def start(self, on_message):
        self.on_message = on_message

    async def stop(self):
        pass

    async def list_chats(self):
        return self.chats

    async def send_text(self, chat_id, text):
        self.texts.append((chat_id, text))

    async def send_image(self, chat_id, image, caption=""):
        if self.fail_images:
            raise RuntimeError("media upload failed")
        self.images.append((chat_id, image, caption))


def _message(body, chat=OPS, sender="62811", name="Budi", type="chat"):
    return IncomingMessage(body=body, chat=chat, sender_number=sender, sender_name=name, type=type)


@pytest.fixture
def client():
    return FakeChatClient()


@pytest.fixture
def command_handler():
    handler = AsyncMock()
    handler.handle_command.return_value = CommandReply("📊 *System Status*\n\nall good")
    return handler


@pytest.fixture
def config():
    return WhatsAppConfig(allowed_groups=["Ops Room"])


@pytest.fixture
def bot(client, command_handler, config):
    bot = WhatsAppBot(client, command_handler, config)
    bot.set_ready(True)
    return bot


# ──────────────────────────────────────────────────────────────
#  Inbound commands
# ──────────────────────────────────────────────────────────────

class TestInboundFilters:

    @pytest.mark.asyncio
    async def test_not_ready_ignores(self, bot, client, command_handler):
        bot.set_ready(False)
        await bot.handle_message(_message("!systrack status"))
        assert client.texts == []
        command_handler.handle_command.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_chat_type_ignored(self, bot, client):
        await bot.handle_message(_message("!systrack status", type="image"))
        assert client.texts == []

    @pytest.mark.asyncio
    async def test_no_prefix_ignored(self, bot, client, command_handler):
        await bot.handle_message(_message("status please"))
        assert client.texts == []
        command_handler.handle_command.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_group_not_allowed(self, bot, client):
        await bot.handle_message(_message("!systrack status", chat=OTHER))
        assert client.texts == []

    @pytest.mark.asyncio
    async def test_private_chat_ignored(self, client, command_handler):
        bot = WhatsAppBot(client, command_handler, WhatsAppConfig(allowed_groups=["Private Chat"]))
        bot.set_ready(True)
        await bot.handle_message(_message("!systrack status", chat=DM))
        assert client.texts == []
        command_handler.handle_command.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_groups_only_off_replies_disabled(self, client, command_handler):
        bot = WhatsAppBot(client, command_handler,
                          WhatsAppConfig(allowed_groups=["Ops Room"], groups_only=False))
        bot.set_ready(True)
        await bot.handle_message(_message("!systrack status"))
        assert client.texts == [(OPS.id, DISABLED_REPLY)]

    @pytest.mark.asyncio
    async def test_non_admin_gets_private_refusal(self, client, command_handler):
        bot = WhatsAppBot(client, command_handler,
                          WhatsAppConfig(allowed_groups=["Ops Room"], admin_phone="62899"))
        bot.set_ready(True)
        await bot.handle_message(_message("!systrack status", sender="62811"))
        assert client.texts == [("62811@c.us", ADMIN_ONLY_REPLY)]
        command_handler.handle_command.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_admin_is_served(self, client, command_handler):
        bot = WhatsAppBot(client, command_handler,
                          WhatsAppConfig(allowed_groups=["Ops Room"], admin_phone="62899"))
        bot.set_ready(True)
        await bot.handle_message(_message("!systrack status", sender="62899"))
        command_handler.handle_command.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_welcome(self, bot, client, command_handler):
        await bot.handle_message(_message("  !SysTrack   Hello "))
        assert client.texts == [(OPS.id, WELCOME_MESSAGE)]
        command_handler.handle_command.assert_not_awaited()


class TestCommandReplies:

    @pytest.mark.asyncio
    async def test_reply_has_sender_footer(self, bot, client, command_handler):
        await bot.handle_message(_message("!systrack status"))

        command_handler.handle_command.assert_awaited_once_with("!systrack status")
        assert client.texts == [(OPS.id, "📊 *System Status*\n\nall good\n\n_Response for Budi_")]
        assert client.images == []

    @pytest.mark.asyncio
    async def test_footer_falls_back_to_number(self, bot, client):
        await bot.handle_message(_message("!systrack status", name=""))
        assert client.texts[0][1].endswith("_Response for 62811_")

    @pytest.mark.asyncio
    async def test_chart_image_follows_text(self, bot, client, command_handler):
        command_handler.handle_command.return_value = CommandReply("report", b"png")
        await bot.handle_message(_message("!systrack service-status 7"))

        assert client.texts[0][1].startswith("report")
        assert client.images == [(OPS.id, b"png", "Service Status Chart - Budi")]

    @pytest.mark.asyncio
    async def test_handler_crash_gets_error_reply(self, bot, client, command_handler):
        command_handler.handle_command.side_effect = RuntimeError("bug")
        await bot.handle_message(_message("!systrack status"))
        assert client.texts == [(OPS.id, REQUEST_ERROR_REPLY + "\n\n_Error for Budi_")]


# ──────────────────────────────────────────────────────────────
#  Outbound helpers
# ──────────────────────────────────────────────────────────────

class TestGroupSending:

    @pytest.mark.asyncio
    async def test_find_group_is_case_insensitive(self, bot):
        assert await bot.find_group("ops room") == OPS
        assert await bot.find_group("Budi") is None

    @pytest.mark.asyncio
    async def test_send_message_to_group(self, bot, client):
        assert await bot.send_message_to_group("OPS ROOM", "hi") is True
        assert client.texts == [(OPS.id, "hi")]

    @pytest.mark.asyncio
    async def test_unknown_group(self, bot, client):
        assert await bot.send_message_to_group("Nowhere", "hi") is False
        assert client.texts == []

    @pytest.mark.asyncio
    async def test_not_ready_cannot_send(self, bot, client):
        bot.set_ready(False)
        assert await bot.send_message_to_group("Ops Room", "hi") is False
        assert await bot.get_available_groups() == []

    @pytest.mark.asyncio
    async def test_available_groups(self, bot):
        assert await bot.get_available_groups() == [
            {"name": "Ops Room", "id": OPS.id},
            {"name": "Family", "id": OTHER.id},
        ]


# ──────────────────────────────────────────────────────────────
#  Bridge <-> broker
# ──────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def bridge(bot, pubsub):
    bridge = TriggerBridge(bot, pubsub)
    await bridge.start()
    yield bridge
    await bridge.stop()


@pytest_asyncio.fixture
async def broker(pubsub):
    from whatsapp.broker import MessageBroker
    broker = MessageBroker(pubsub, send_timeout=1.0, groups_timeout=1.0)
    await broker.start()
    yield broker
    await broker.stop()


class TestTriggerBridge:

    @pytest.mark.asyncio
    async def test_send_round_trip(self, bridge, broker, client):
        result = await broker.send_trigger_to_group("Ops Room", "Disk at 91%")
        assert result.success is True
        assert client.texts == [(OPS.id, "Disk at 91%")]

    @pytest.mark.asyncio
    async def test_send_with_image(self, bridge, broker, client):
        result = await broker.send_trigger_to_group("Ops Room", "chart", image=b"\x89PNG")
        assert result.success is True
        assert client.images == [(OPS.id, b"\x89PNG", "Chart for Ops Room")]

    @pytest.mark.asyncio
    async def test_image_failure_fails_the_send(self, bridge, broker, client):
        client.fail_images = True
        result = await broker.send_trigger_to_group("Ops Room", "chart", image=b"\x89PNG")
        assert client.texts == [(OPS.id, "chart")]
        assert result.success is False
        assert result.error == "Failed to send message to group"

    @pytest.mark.asyncio
    async def test_unknown_group_fails(self, bridge, broker, client):
        result = await broker.send_trigger_to_group("Nowhere", "hi")
        assert result.success is False
        assert client.texts == []

    @pytest.mark.asyncio
    async def test_groups_round_trip(self, bridge, broker):
        groups = await broker.get_available_groups()
        assert groups == [
            {"name": "Ops Room", "id": OPS.id},
            {"name": "Family", "id": OTHER.id},
        ]

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, bot, pubsub, broker, client):
        bridge = TriggerBridge(bot, pubsub)
        await bridge.start()
        await bridge.stop()
        broker.send_timeout = 0.05
        result = await broker.send_trigger_to_group("Ops Room", "hi")
        assert result.success is False
        assert client.texts == []
