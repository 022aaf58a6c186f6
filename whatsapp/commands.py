"""
Command Interpreter — parses `!systrack ...` chat text and builds replies.

    !systrack                      → help
    !systrack help | commands | list
    !systrack health | status | services
    !systrack service <id|name>
    !systrack service-status <id|name>     (text + optional chart image)
    !systrack logs <id|name>

The prefix and keyword are case-insensitive. The identifier keeps its case:
an integer is looked up by id, anything else is a case-sensitive substring
match on the service name (lowest id wins).

Nothing here raises to the caller. Missing prefix, unknown keywords and
unknown services are normal replies; unexpected errors become an apology.
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

from utils.formatting import format_count, format_datetime, percentage
from whatsapp.health import HealthChecker
from whatsapp.service_manager import ServiceManager, ServiceReport

logger = structlog.get_logger()

PREFIX = "!systrack"

GUIDANCE_REPLY = (
    'Please use the !systrack prefix for commands. '
    'Type "!systrack help" to see available commands.'
)
ERROR_REPLY = "Sorry, an error occurred while processing your command."


class CommandIntent(str, Enum):
    COMMANDS = "commands"
    HELP = "help"
    HEALTH = "health"
    STATUS = "status"
    SERVICES = "services"
    SERVICE_DETAIL = "service"
    SERVICE_STATUS = "service-status"
    SERVICE_LOGS = "logs"
    UNKNOWN = "unknown"


_NO_ARGUMENT = {
    "": CommandIntent.HELP,
    "help": CommandIntent.HELP,
    "commands": CommandIntent.COMMANDS,
    "list": CommandIntent.COMMANDS,
    "health": CommandIntent.HEALTH,
    "status": CommandIntent.STATUS,
    "services": CommandIntent.SERVICES,
}

_WITH_ARGUMENT = {
    "service": CommandIntent.SERVICE_DETAIL,
    "service-status": CommandIntent.SERVICE_STATUS,
    "logs": CommandIntent.SERVICE_LOGS,
}


@dataclass(frozen=True)
class ParsedCommand:
    intent: CommandIntent
    argument: str = ""


@dataclass
class CommandReply:
    text: str
    image: Optional[bytes] = None


def has_prefix(text: str) -> bool:
    return text.strip().lower().startswith(PREFIX)


def parse_command(text: str) -> Optional[ParsedCommand]:
    """Parse chat text. Returns None when the `!systrack` prefix is missing."""
    stripped = text.strip()
    if not stripped.lower().startswith(PREFIX):
        return None

    rest = stripped[len(PREFIX):].strip()
    parts = rest.split(None, 1)
    keyword = parts[0].lower() if parts else ""
    argument = parts[1].strip() if len(parts) > 1 else ""

    if not argument and keyword in _NO_ARGUMENT:
        return ParsedCommand(_NO_ARGUMENT[keyword])
    if argument and keyword in _WITH_ARGUMENT:
        return ParsedCommand(_WITH_ARGUMENT[keyword], argument)
    return ParsedCommand(CommandIntent.UNKNOWN, rest)


class ChartRenderer(Protocol):
    """Renders the service-status chart as PNG bytes."""

    async def render_service_status(self, report: ServiceReport) -> Optional[bytes]:
        ...


COMMANDS_TEXT = """📋 *All Available Commands*

*Health & Status:*
• `!systrack health` - Check system health
• `!systrack status` - Get system status overview

*Services:*
• `!systrack services` - List all services
• `!systrack service <id|name>` - Get service details
• `!systrack service-status <id|name>` - Get service status with charts
• `!systrack logs <id|name>` - Get service logs

*General:*
• `!systrack help` - Show detailed help message
• `!systrack commands` - Show this commands list

*Quick Examples:*
• `!systrack service 1` - Get details for service with ID 1
• `!systrack service my-server` - Get details for service named "my-server"
• `!systrack logs 1` - Get logs for service with ID 1
• `!systrack logs my-server` - Get logs for service named "my-server\""""

HELP_TEXT = """🤖 *SysTrack WhatsApp Bot Help*

*How to use:*
All commands must start with `!systrack` prefix.

*Health & Status:*
• `!systrack health` - Check system health and get health score
• `!systrack status` - Get system status overview with service counts

*Services:*
• `!systrack services` - List all services with their status
• `!systrack service <id|name>` - Get detailed information about a specific service
• `!systrack service-status <id|name>` - Get service status with charts and recent logs
• `!systrack logs <id|name>` - Get recent logs for a specific service

*General:*
• `!systrack help` - Show this help message
• `!systrack commands` - Show list of all commands

*Examples:*
• `!systrack service 1` - Get details for service with ID 1
• `!systrack service my-server` - Get details for service named "my-server"
• `!systrack service-status 1` - Get status chart for service with ID 1
• `!systrack service-status my-server` - Get status chart for service named "my-server"
• `!systrack logs 1` - Get logs for service with ID 1
• `!systrack logs my-server` - Get logs for service named "my-server"

*Note:* Type `!systrack commands` to see a quick list of all available commands."""


class CommandHandler:
    """
    Usage:
        handler = CommandHandler(ServiceManager(store), HealthChecker(store))
        reply = await handler.handle_command("!systrack service 5")
        reply.text, reply.image
    """

    def __init__(self, service_manager: ServiceManager, health_checker: HealthChecker,
                 chart_renderer: Optional[ChartRenderer] = None):
        self.service_manager = service_manager
        self.health_checker = health_checker
        self.chart_renderer = chart_renderer
        self._handlers: dict[CommandIntent, Callable[[ParsedCommand], Awaitable[CommandReply]]] = {
            CommandIntent.COMMANDS: self._commands,
            CommandIntent.HELP: self._help,
            CommandIntent.HEALTH: self._health,
            CommandIntent.STATUS: self._status,
            CommandIntent.SERVICES: self._services,
            CommandIntent.SERVICE_DETAIL: self._service_detail,
            CommandIntent.SERVICE_LOGS: self._service_logs,
            CommandIntent.SERVICE_STATUS: self._service_status,
            CommandIntent.UNKNOWN: self._unknown,
        }

    async def handle_command(self, text: str) -> CommandReply:
        try:
            parsed = parse_command(text)
            if parsed is None:
                return CommandReply(GUIDANCE_REPLY)
            logger.info("command_received", intent=parsed.intent.value, argument=parsed.argument)
            return await self._handlers[parsed.intent](parsed)
        except Exception as e:
            logger.error("command_handling_error", command=text, error=str(e), exc_info=True)
            return CommandReply(ERROR_REPLY)

    # ── Static replies ─────────────────────────────────────

    async def _commands(self, cmd: ParsedCommand) -> CommandReply:
        return CommandReply(COMMANDS_TEXT)

    async def _help(self, cmd: ParsedCommand) -> CommandReply:
        return CommandReply(HELP_TEXT)

    async def _unknown(self, cmd: ParsedCommand) -> CommandReply:
        return CommandReply(
            f'Unknown command: "{cmd.argument}". Type "!systrack help" to see available commands.'
        )

    # ── Store-backed replies ───────────────────────────────

    async def _health(self, cmd: ParsedCommand) -> CommandReply:
        try:
            body = await self.health_checker.check_system_health()
        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            return CommandReply("❌ Failed to check system health.")
        return CommandReply(f"🏥 *System Health Check*\n\n{body}")

    async def _status(self, cmd: ParsedCommand) -> CommandReply:
        try:
            body = await self.health_checker.get_system_status()
        except Exception as e:
            logger.error("system_status_failed", error=str(e))
            return CommandReply("❌ Failed to get system status.")
        return CommandReply(f"📊 *System Status*\n\n{body}")

    async def _services(self, cmd: ParsedCommand) -> CommandReply:
        try:
            body = await self.service_manager.get_all_services()
        except Exception as e:
            logger.error("services_list_failed", error=str(e))
            return CommandReply("❌ Failed to get services list.")
        return CommandReply(f"📋 *Services List*\n\n{body}")

    async def _service_detail(self, cmd: ParsedCommand) -> CommandReply:
        try:
            body = await self.service_manager.get_service_details(cmd.argument)
        except Exception as e:
            logger.error("service_details_failed", identifier=cmd.argument, error=str(e))
            return CommandReply(f'❌ Failed to get service details for "{cmd.argument}".')
        return CommandReply(f"🔧 *Service Details*\n\n{body}")

    async def _service_logs(self, cmd: ParsedCommand) -> CommandReply:
        try:
            body = await self.service_manager.get_service_logs(cmd.argument)
        except Exception as e:
            logger.error("service_logs_failed", identifier=cmd.argument, error=str(e))
            return CommandReply(f'❌ Failed to get service logs for "{cmd.argument}".')
        return CommandReply(f"📝 *Service Logs*\n\n{body}")

    async def _service_status(self, cmd: ParsedCommand) -> CommandReply:
        try:
            report = await self.service_manager.get_service_report(cmd.argument)
        except Exception as e:
            logger.error("service_status_failed", identifier=cmd.argument, error=str(e))
            return CommandReply(f'❌ Failed to generate service status for "{cmd.argument}".')
        if report is None:
            return CommandReply(f'❌ Service "{cmd.argument}" not found.')

        image = None
        if self.chart_renderer is not None:
            try:
                image = await self.chart_renderer.render_service_status(report)
            except Exception as e:
                logger.warning("service_chart_failed", service_id=report.id, error=str(e))
        return CommandReply(format_service_report(report), image)


def format_service_report(report: ServiceReport) -> str:
    lines = [
        "📊 *Service Status Report*",
        "",
        f"*Service:* {report.name}",
        f"*Domain:* {report.domain}",
        f"*Status:* {report.status.upper()}",
        "",
    ]

    latest = report.latest
    if latest is None:
        lines.append("*No data available* - Try syncing the logs first.")
        return "\n".join(lines)

    disk, space = latest["disk_usage_mb"], latest["available_space_mb"]
    files, inodes = latest["file_count"], latest["available_inode"]
    lines += [
        "*Current Usage:*",
        f"• Disk: {_gb(disk)} GB / {_gb(space)} GB ({percentage(disk, space)}%)",
        f"• Files: {format_count(files)} / {format_count(inodes)} ({percentage(files, inodes)}%)",
        "",
        f"*Recent Logs (Last {len(report.logs)} entries):*",
    ]
    for index, log in enumerate(report.logs, start=1):
        lines.append(f"{index}. {format_datetime(log['recorded_at'])}")
        lines.append(f"   Disk: {_gb(log['disk_usage_mb'])} GB | Files: {format_count(log['file_count'])}")
    return "\n".join(lines)


def _gb(mb) -> str:
    return "N/A" if mb is None else f"{float(mb) / 1024:.2f}"
