"""Built-in commands for Toshia.

Handles: help, ping, group.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Optional

import structlog

from ..chat_state import FLAGS
from .base import BaseCommandHandler, CommandContext, CommandResult

logger = structlog.get_logger("toshia.commands")

_ON = ("on", "true", "enable", "1")
_OFF = ("off", "false", "disable", "0")


class CoreCommandHandler(BaseCommandHandler):
    """Handles built-in bot commands."""

    def get_commands(self):
        return [
            {
                "name": "help",
                "description": "Show available commands",
                "access": "anyone",
                "usage": ["", "all", "<command>"],
                "author": "Toshia",
                "category": "system",
                "aliases": ["commands"],
                "handler": self.handle_help,
            },
            {
                "name": "ping",
                "description": "Check that the bot is alive",
                "access": "anyone",
                "usage": "",
                "author": "Toshia",
                "category": "utility",
                "handler": self.handle_ping,
            },
            {
                "name": "group",
                "description": "Show or toggle this group's features",
                "access": "admin",
                "usage": ["", "<ai|bot|meme|noti> <on|off>"],
                "author": "Toshia",
                "category": "group",
                "handler": self.handle_group,
            },
        ]

    async def handle_help(self, ctx: CommandContext) -> CommandResult:
        """List commands, or describe one.

        Telegram usage::

            /help
            /help all
            /help ping
        """
        if ctx.args and ctx.args[0].lower() != "all":
            return self._describe(ctx, ctx.args[0])

        verbose = bool(ctx.args)
        by_category: OrderedDict[str, list] = OrderedDict()
        for definition in ctx.registry.all_definitions():
            by_category.setdefault(definition.category, []).append(definition)

        lines = ["Commands:"]
        for category, definitions in by_category.items():
            lines.append(f"\n[{category}]")
            for d in definitions:
                lines.append(f"/{d.name} - {d.description}" if verbose else f"/{d.name}")
        if not verbose:
            lines.append("\nType /help all for descriptions or /help <command> for details.")
        return CommandResult.success("\n".join(lines))

    def _describe(self, ctx: CommandContext, name: str) -> CommandResult:
        definition = ctx.registry.lookup(name)
        if definition is None:
            return CommandResult.failure(f"No command named '{name}'.")
        lines = [
            f"/{definition.name} - {definition.description}",
            f"Access: {definition.access}",
            f"Category: {definition.category}",
            f"Author: {definition.author}",
        ]
        if definition.aliases:
            lines.append("Aliases: " + ", ".join(definition.aliases))
        lines.append(f"Usage:\n{definition.format_usage()}")
        return CommandResult.success("\n".join(lines))

    async def handle_ping(self, ctx: CommandContext) -> CommandResult:
        """Reply with Pong."""
        return CommandResult.success("Pong!")

    async def handle_group(self, ctx: CommandContext) -> Optional[CommandResult]:
        """Show or change the feature flags of the current group.

        Telegram usage::

            /group
            /group ai off

        Changes are persisted when the command finishes.
        """
        if not ctx.message.chat.is_group:
            return CommandResult.failure("This command can only be used in groups.")

        state = ctx.chat_state.get(ctx.chat_id)
        if state is None:
            return CommandResult.failure("This group is not registered yet.")

        if not ctx.args:
            flags = "\n".join(
                f"{flag}: {'on' if getattr(state, flag) else 'off'}" for flag in FLAGS
            )
            return CommandResult.success(f"Group settings:\n{flags}")

        flag = ctx.args[0].lower()
        value = ctx.args[1].lower() if len(ctx.args) > 1 else ""
        if flag not in FLAGS or value not in _ON + _OFF:
            await ctx.usages()
            return None

        enabled = value in _ON
        ctx.chat_state.set_flag(ctx.chat_id, flag, enabled)
        logger.info("group_flag_changed", chat_id=ctx.chat_id, flag=flag, enabled=enabled)
        return CommandResult.success(f"{flag} is now {'on' if enabled else 'off'}.")
