"""
WhatsApp Bot — runs inside the chat-client process.

Two roles:
  WhatsAppBot    — answers `!systrack` commands typed in allow-listed groups
  TriggerBridge  — serves broker requests from other processes over pub/sub

The session library itself is a collaborator: anything implementing
ChatClient (connect, list chats, send text, send image) can drive the bot.
"""
from __future__ import annotations

import base64
import json
import structlog
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from config.settings import WhatsAppConfig
from whatsapp.broker import BrokerChannels, PubSub, Subscription
from whatsapp.commands import CommandHandler, has_prefix

logger = structlog.get_logger()

WELCOME_MESSAGE = (
    "🤖 Welcome to SysTrack WhatsApp Bot!\n\n"
    "Type `!systrack help` to see available commands or `!systrack commands` for a quick list."
)
DISABLED_REPLY = "Sorry, this bot is currently disabled."
ADMIN_ONLY_REPLY = "Sorry, this bot is only available for administrators."
REQUEST_ERROR_REPLY = "Sorry, an error occurred while processing your request."
SEND_FAILED_ERROR = "Failed to send message to group"

_WELCOME_TRIGGERS = {"!systrack", "!systrack hi", "!systrack hello"}


# ──────────────────────────────────────────────────────────────
#  Chat client contract
# ──────────────────────────────────────────────────────────────

@dataclass
class ChatInfo:
    id: str
    name: str
    is_group: bool


@dataclass
class IncomingMessage:
    body: str
    chat: ChatInfo
    sender_number: str
    sender_name: str = ""
    type: str = "chat"

    @property
    def sender(self) -> str:
        return self.sender_name or self.sender_number


class ChatClient(Protocol):
    async def start(self, on_message: Callable[[IncomingMessage], Awaitable[None]]) -> None:
        """Open the session and deliver inbound messages to `on_message`."""
        ...

    async def stop(self) -> None:
        ...

    async def list_chats(self) -> list[ChatInfo]:
        ...

    async def send_text(self, chat_id: str, text: str) -> None:
        ...

    async def send_image(self, chat_id: str, image: bytes, caption: str = "") -> None:
        ...


def private_chat_id(phone: str) -> str:
    return f"{phone}@c.us"


# ══════════════════════════════════════════════════════════════
#  BOT
# ══════════════════════════════════════════════════════════════

class WhatsAppBot:

    def __init__(self, client: ChatClient, command_handler: CommandHandler,
                 config: Optional[WhatsAppConfig] = None):
        self.client = client
        self.command_handler = command_handler
        self.config = config or WhatsAppConfig()
        self.ready = False

    def set_ready(self, ready: bool) -> None:
        self.ready = ready
        logger.info("whatsapp_bot_ready" if ready else "whatsapp_bot_not_ready")

    # ── Inbound ────────────────────────────────────────────

    async def handle_message(self, message: IncomingMessage) -> None:
        if not self.ready:
            logger.warning("whatsapp_bot_not_ready_ignoring_message")
            return
        if message.type != "chat":
            return

        body = message.body.strip()
        if not has_prefix(body):
            return

        chat = message.chat
        group_name = chat.name if chat.is_group else "Private Chat"
        if group_name not in self.config.allowed_groups:
            return

        logger.info("whatsapp_command_received", sender=message.sender, group=group_name, body=body)

        if not chat.is_group:
            return

        if not self.config.groups_only:
            await self._send(chat.id, DISABLED_REPLY)
            return

        admin = self.config.admin_phone
        if admin and message.sender_number != admin:
            await self._send(private_chat_id(message.sender_number), ADMIN_ONLY_REPLY)
            return

        if " ".join(body.lower().split()) in _WELCOME_TRIGGERS:
            await self._send(chat.id, WELCOME_MESSAGE)
            return

        try:
            reply = await self.command_handler.handle_command(body)
            await self._send(chat.id, reply.text + f"\n\n_Response for {message.sender}_")
            if reply.image:
                await self._send_image(chat.id, reply.image, f"Service Status Chart - {message.sender}")
        except Exception as e:
            logger.error("whatsapp_command_error", sender=message.sender, error=str(e), exc_info=True)
            await self._send(chat.id, REQUEST_ERROR_REPLY + f"\n\n_Error for {message.sender}_")

    # ── Outbound ───────────────────────────────────────────

    async def _send(self, chat_id: str, text: str) -> bool:
        try:
            await self.client.send_text(chat_id, text)
            return True
        except Exception as e:
            logger.error("whatsapp_send_failed", chat_id=chat_id, error=str(e))
            return False

    async def _send_image(self, chat_id: str, image: bytes, caption: str = "") -> bool:
        try:
            await self.client.send_image(chat_id, image, caption)
            return True
        except Exception as e:
            logger.error("whatsapp_send_image_failed", chat_id=chat_id, error=str(e))
            return False

    async def find_group(self, group_name: str) -> Optional[ChatInfo]:
        wanted = group_name.lower()
        for chat in await self.client.list_chats():
            if chat.is_group and (chat.name or "").lower() == wanted:
                return chat
        return None

    async def _resolve_group(self, group_name: str) -> Optional[ChatInfo]:
        if not self.ready:
            logger.warning("whatsapp_bot_not_ready_cannot_send", group=group_name)
            return None
        try:
            group = await self.find_group(group_name)
        except Exception as e:
            logger.error("whatsapp_list_chats_failed", error=str(e))
            return None
        if group is None:
            logger.warning("whatsapp_group_not_found", group=group_name)
        return group

    async def send_message_to_group(self, group_name: str, message: str) -> bool:
        group = await self._resolve_group(group_name)
        if group is None:
            return False
        sent = await self._send(group.id, message)
        if sent:
            logger.info("whatsapp_group_message_sent", group=group_name)
        return sent

    async def send_image_to_group(self, group_name: str, image: bytes, caption: str = "") -> bool:
        group = await self._resolve_group(group_name)
        if group is None:
            return False
        sent = await self._send_image(group.id, image, caption)
        if sent:
            logger.info("whatsapp_group_image_sent", group=group_name)
        return sent

    async def get_available_groups(self) -> list[dict[str, str]]:
        if not self.ready:
            logger.warning("whatsapp_bot_not_ready_cannot_list_groups")
            return []
        try:
            chats = await self.client.list_chats()
        except Exception as e:
            logger.error("whatsapp_list_chats_failed", error=str(e))
            return []
        return [{"name": c.name or "Unknown", "id": c.id} for c in chats if c.is_group]


# ══════════════════════════════════════════════════════════════
#  PUB/SUB BRIDGE
# ══════════════════════════════════════════════════════════════

class TriggerBridge:
    """
    Bot-side half of the broker protocol: consumes `send` and `request`,
    answers on `result` and `groups`.

    A send succeeds only if the text went out and, when an image is
    attached, the image went out too.
    """

    def __init__(self, bot: WhatsAppBot, pubsub: PubSub,
                 channels: Optional[BrokerChannels] = None):
        self.bot = bot
        self.pubsub = pubsub
        self.channels = channels or BrokerChannels()
        self._subscription: Optional[Subscription] = None

    async def start(self) -> None:
        self._subscription = await self.pubsub.subscribe(
            [self.channels.send, self.channels.request], self._on_message,
        )
        logger.info("trigger_bridge_started")

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
        logger.info("trigger_bridge_stopped")

    async def _on_message(self, channel: str, raw: str) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("trigger_bridge_invalid_payload", channel=channel)
            return

        if channel == self.channels.send and data.get("type") == "send_to_group":
            await self._handle_send(data)
        elif channel == self.channels.request and data.get("type") == "get_groups":
            groups = await self.bot.get_available_groups()
            await self.pubsub.publish(self.channels.groups, json.dumps(groups))

    async def _handle_send(self, data: dict[str, Any]) -> None:
        request_id = data.get("requestId")
        group_name = data.get("groupName", "")
        try:
            success = await self.bot.send_message_to_group(group_name, data.get("message", ""))
            if success and data.get("imageBuffer"):
                image = base64.b64decode(data["imageBuffer"])
                success = await self.bot.send_image_to_group(group_name, image, f"Chart for {group_name}")
        except Exception as e:
            logger.error("trigger_bridge_send_error", request_id=request_id, error=str(e), exc_info=True)
            success = False

        result = {"requestId": request_id, "success": success}
        if not success:
            result["error"] = SEND_FAILED_ERROR
        await self.pubsub.publish(self.channels.result, json.dumps(result))
        logger.info("trigger_bridge_result_published", request_id=request_id, success=success)
