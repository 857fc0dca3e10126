"""Inbound message dispatch for Toshia.

Classifies each message as a command or plain text, resolves commands
through the registry, enforces access tiers, runs the handler, and
falls back to the conversational assistant for plain text.

Per-message flow::

    Received -> Classified{Command|PlainText} -> [AccessChecked]
             -> Executed | Failed | Rejected | Suggested | Ignored

Every command that resolves to a definition runs inside
command_scope(), which saves chat state and clears the cache directory
exactly once on the way out, whatever happened inside.

Key classes:
    DispatchOutcome: Terminal state of one message.
    ParsedCommand: Result of splitting a command message.
    Dispatcher: The pipeline itself.

Key functions:
    parse_command: Split "/name@bot arg1 arg2" into its parts.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, List, Optional, Protocol

import structlog

from .access import AccessControl
from .cache import CacheDirectory
from .chat_state import ChatStateStore
from .commands.base import CommandContext, CommandDefinition, CommandRegistry, CommandResult
from .fuzzy import suggest
from .telegram import Message

logger = structlog.get_logger("toshia.bot")

COMMAND_PREFIX = "/"
# Group management stays reachable when the bot flag is off for a chat
BOT_DISABLED_BYPASS = "/group"

PREFIX_ONLY_MESSAGE = (
    "You typed only the prefix. Please provide a command. "
    "Type /help all to view all commands."
)
COMMAND_ERROR_MESSAGE = "An error occurred while executing the command."
FALLBACK_ERROR_MESSAGE = "An error occurred while processing your message."
USAGE_HEADER = "⦿ Usages:"


class DispatchOutcome(str, Enum):
    """Terminal state of a dispatched message."""
    EXECUTED = "executed"
    FAILED = "failed"
    REJECTED = "rejected"
    SUGGESTED = "suggested"
    PREFIX_ONLY = "prefix_only"
    ANSWERED = "answered"
    IGNORED = "ignored"


@dataclass
class ParsedCommand:
    """A command message split into its parts.

    Attributes:
        name: Command token without prefix or mention, as typed.
        args: Whitespace-separated words after the command token.
        mention: Username after ``@``, or None if there was none.
    """
    name: str
    args: List[str] = field(default_factory=list)
    mention: Optional[str] = None


def parse_command(text: str) -> ParsedCommand:
    """Split a message that starts with the command prefix.

    The command token ends at the first space, so "/ ping" has an empty
    name. Arguments are the whitespace-separated words after it.

    Example::

        >>> parse_command("/help@ToshiaBot all")
        ParsedCommand(name='help', args=['all'], mention='ToshiaBot')
    """
    token, _, rest = text[len(COMMAND_PREFIX):].partition(" ")
    args = rest.split()

    mention = None
    if "@" in token:
        token, mention = token.split("@", 1)
    return ParsedCommand(name=token, args=args, mention=mention)


class Transport(Protocol):
    """What the dispatcher needs from the messaging platform."""

    def send_message(self, chat_id: int, text: str) -> Awaitable[bool]: ...

    def get_chat_administrators(self, chat_id: int) -> Awaitable[list]: ...

    def set_my_commands(self, commands: list) -> Awaitable[None]: ...


class FallbackResponder(Protocol):
    """Conversational responder for plain text."""

    def respond(self, text: str, chat_type: str) -> Awaitable[Optional[str]]: ...


class Dispatcher:
    """Routes inbound messages to command handlers or the fallback.

    All collaborators are passed in; nothing is looked up globally.

    Args:
        transport: Telegram client (send, admin lookup).
        registry: Loaded command registry.
        access: Access control evaluator.
        chat_state: Per-chat flag store.
        cache: Cache directory cleared after each command.
        bot_username: The bot's own @username, for mention matching.
        fallback: Optional conversational responder for plain text.
    """

    def __init__(
        self,
        transport: Transport,
        registry: CommandRegistry,
        access: AccessControl,
        chat_state: ChatStateStore,
        cache: CacheDirectory,
        bot_username: Optional[str],
        fallback: Optional[FallbackResponder] = None,
    ):
        self.transport = transport
        self.registry = registry
        self.access = access
        self.chat_state = chat_state
        self.cache = cache
        self.bot_username = bot_username
        self.fallback = fallback

    async def announce_commands(self) -> None:
        """Publish (name, description) for every distinct command."""
        commands = [(d.name, d.description) for d in self.registry.all_definitions()]
        await self.transport.set_my_commands(commands)
        logger.info("commands_announced", count=len(commands))

    async def handle_message(self, message: Message) -> DispatchOutcome:
        """Run one inbound message through the pipeline."""
        chat = message.chat
        text = message.text

        if chat.is_group and chat.id not in self.chat_state:
            self.chat_state.ensure_chat(chat.id)

        if text is None:
            return DispatchOutcome.IGNORED

        state = self.chat_state.get(chat.id)
        if state is not None and not state.bot and not text.startswith(BOT_DISABLED_BYPASS):
            logger.debug("message_ignored_bot_disabled", chat_id=chat.id)
            return DispatchOutcome.IGNORED

        if text.startswith(COMMAND_PREFIX):
            return await self._handle_command(message, parse_command(text))
        return await self._handle_plain_text(message)

    # --- Command path ---

    async def _handle_command(
        self, message: Message, parsed: ParsedCommand
    ) -> DispatchOutcome:
        chat_id = message.chat.id

        if parsed.mention is not None and not self._is_own_mention(parsed.mention):
            logger.debug("command_for_other_bot", mention=parsed.mention)
            return DispatchOutcome.IGNORED

        if not parsed.name:
            await self.transport.send_message(chat_id, PREFIX_ONLY_MESSAGE)
            return DispatchOutcome.PREFIX_ONLY

        definition = self.registry.lookup(parsed.name)
        if definition is None:
            closest = suggest(parsed.name.lower(), self.registry.command_names)
            reply = f"The command '{parsed.name}' is not found in my system."
            if closest is not None:
                reply += f" Did you mean '{closest}'?"
            await self.transport.send_message(chat_id, reply)
            return DispatchOutcome.SUGGESTED

        logger.info("command_used", command=definition.name, chat_id=chat_id)
        async with self.command_scope(definition):
            return await self._run_command(definition, message, parsed.args)

    def _is_own_mention(self, mention: str) -> bool:
        return bool(mention) and bool(self.bot_username) and (
            mention.lower() == self.bot_username.lower()
        )

    @asynccontextmanager
    async def command_scope(self, definition: CommandDefinition):
        """Guarantee post-command cleanup: save chat state, then clear cache."""
        try:
            yield
        finally:
            self.chat_state.save()
            deleted = self.cache.clear()
            logger.debug("command_cleanup", command=definition.name, cache_files=deleted)

    async def _run_command(
        self, definition: CommandDefinition, message: Message, args: List[str]
    ) -> DispatchOutcome:
        chat_id = message.chat.id
        caller_id = message.sender_id

        result = await self.access.check_access(
            definition.access, chat_id, caller_id, definition.name
        )
        if not result.granted:
            logger.info(
                "command_rejected",
                command=definition.name,
                chat_id=chat_id,
                reason=result.reason.value,
            )
            await self.transport.send_message(chat_id, result.message)
            return DispatchOutcome.REJECTED

        usage_text = f"{USAGE_HEADER}\n{definition.format_usage()}"

        async def usages() -> None:
            await self.transport.send_message(chat_id, usage_text)

        ctx = CommandContext(
            transport=self.transport,
            chat_id=chat_id,
            caller_id=caller_id,
            args=args,
            message=message,
            usages=usages,
            chat_state=self.chat_state,
            registry=self.registry,
            cache_dir=self.cache.path,
        )

        try:
            outcome = await definition.handler(ctx)
        except Exception as e:
            logger.error(
                "command_failed",
                command=definition.name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            await self.transport.send_message(chat_id, COMMAND_ERROR_MESSAGE)
            return DispatchOutcome.FAILED

        if isinstance(outcome, CommandResult) and not outcome.ok:
            logger.info("command_returned_failure", command=definition.name)
            await self.transport.send_message(
                chat_id, outcome.message or COMMAND_ERROR_MESSAGE
            )
            return DispatchOutcome.FAILED

        if isinstance(outcome, CommandResult) and outcome.message:
            await self.transport.send_message(chat_id, outcome.message)
        return DispatchOutcome.EXECUTED

    # --- Plain-text path ---

    async def _handle_plain_text(self, message: Message) -> DispatchOutcome:
        chat = message.chat
        state = self.chat_state.get(chat.id)
        wants_reply = chat.is_private or (state is not None and state.ai)
        if not wants_reply or self.fallback is None:
            return DispatchOutcome.IGNORED

        try:
            reply = await self.fallback.respond(message.text, chat.type)
        except Exception as e:
            logger.error(
                "fallback_failed",
                chat_id=chat.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self.transport.send_message(chat.id, FALLBACK_ERROR_MESSAGE)
            return DispatchOutcome.FAILED

        if not reply:
            return DispatchOutcome.IGNORED
        await self.transport.send_message(chat.id, reply)
        return DispatchOutcome.ANSWERED
