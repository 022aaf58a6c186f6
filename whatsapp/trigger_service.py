"""
Trigger Service — sends text or command replies to a WhatsApp group via the broker.
"""
from __future__ import annotations

import structlog
from typing import Optional

from whatsapp.broker import MessageBroker, SendResult, TriggerMessage
from whatsapp.commands import CommandHandler

logger = structlog.get_logger()


def command_footer(group_name: str) -> str:
    return f"\n\n_Response for {group_name} from SysTrack WhatsApp Bot_"


class TriggerService:

    def __init__(self, broker: MessageBroker, command_handler: CommandHandler):
        self.broker = broker
        self.command_handler = command_handler

    async def send_trigger_to_group(self, group_name: str, message: str) -> SendResult:
        return await self.broker.send_trigger_to_group(group_name, message)

    async def send_trigger_command_to_group(self, group_name: str, command: str) -> SendResult:
        """Run a command locally and relay its reply (plus chart, if any) to the group."""
        reply = await self.command_handler.handle_command(command)
        if reply is None or not reply.text:
            return SendResult(success=False, error="Failed to handle command.")
        return await self.broker.send_trigger_to_group(
            group_name, reply.text + command_footer(group_name), reply.image,
        )

    async def get_available_groups(self) -> list[dict[str, str]]:
        return await self.broker.get_available_groups()

    def get_message_status(self, message_id: str) -> Optional[TriggerMessage]:
        return self.broker.get_message_status(message_id)

    def get_all_messages(self) -> list[TriggerMessage]:
        return self.broker.get_all_messages()

    async def retry_failed_messages(self) -> int:
        return await self.broker.retry_failed_messages()

    def cleanup_old_messages(self, max_age_hours: float = 24) -> int:
        return self.broker.cleanup_old_messages(max_age_hours)
