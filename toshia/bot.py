"""Telegram bot implementation for Toshia.

Connects to the Telegram Bot API by long polling and hands every
inbound message to the Dispatcher. Owns the lifecycle of all
subsystems: transport, command registry, chat-state store, cache
directory, access control, and the optional assistant.

Key classes:
    ToshiaBot: Main bot class. Builds every component explicitly and
        passes them to the Dispatcher; nothing is held globally.

Key functions:
    log_task_exception: Done-callback that logs failures of
        fire-and-forget dispatch tasks.
"""

import asyncio
from typing import Iterable, Optional, Set

import structlog

from .access import AccessControl
from .assistant_runner import AssistantRunner
from .cache import CacheDirectory
from .chat_state import ChatStateStore
from .commands import CommandRegistry, builtin_sources
from .config import Config
from .dispatcher import Dispatcher
from .exceptions import ConfigurationError, PersistenceError, StartupError, TransportError
from .telegram import Message, TelegramClient

logger = structlog.get_logger("toshia.bot")


def log_task_exception(task: asyncio.Task):
    """Log exceptions from fire-and-forget tasks instead of silently swallowing them."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        logger.error("dispatch_task_failed", error=str(exc), exc_type=type(exc).__name__)


class ToshiaBot:
    """Telegram bot with a command registry and per-chat state.

    Components are created in __init__ (sync, no I/O) and brought up in
    start(), which talks to Telegram and touches the filesystem.

    Args:
        config: Loaded configuration.
        command_sources: Command mappings to register. Defaults to the
            built-in commands.
        transport: Telegram client; built from config when omitted.
    """

    def __init__(
        self,
        config: Config,
        command_sources: Optional[Iterable[dict]] = None,
        transport: Optional[TelegramClient] = None,
    ):
        self.config = config
        self.transport = transport or TelegramClient(
            token=config.telegram_token,
            api_url=config.telegram_api_url,
            poll_timeout=config.poll_timeout,
        )
        self.chat_state = ChatStateStore(config.database_file)
        self.cache = CacheDirectory(config.cache_dir)
        self.access = AccessControl(
            self.transport, owner_uid=config.owner_uid, owner=config.owner,
        )
        self._command_sources = list(
            command_sources if command_sources is not None else builtin_sources()
        )

        self.assistant: Optional[AssistantRunner] = None
        if config.assistant_enabled:
            try:
                self.assistant = AssistantRunner(
                    api_url=config.assistant_api_url,
                    api_key=config.assistant_api_key,
                    model=config.assistant_model,
                    max_tokens=config.assistant_max_tokens,
                    timeout=config.assistant_timeout,
                )
            except ConfigurationError as e:
                logger.warning("assistant_unavailable", error=str(e))

        self.registry: Optional[CommandRegistry] = None
        self.dispatcher: Optional[Dispatcher] = None
        self.running = False
        self.poll_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    async def start(self):
        """Bring the bot up and begin polling.

        Order: verify the token with getMe, create the chat-state file
        and cache directory, load state, load commands, announce them
        to Telegram, start polling.

        Raises:
            StartupError: On an invalid token or a storage path that
                cannot be created.
        """
        try:
            me = await self.transport.get_me()
        except TransportError as e:
            raise StartupError(
                "Invalid Telegram bot token. Please check your configuration.",
                status=e.status, error=e.message,
            ) from e
        logger.info("bot_identity", name=me.first_name, id=me.id, username=me.username)
        logger.info("bot_owner", owner=self.config.owner)

        try:
            self.chat_state.ensure_file()
        except PersistenceError as e:
            raise StartupError(e.message, path=e.path) from e
        self.cache.ensure()

        self.chat_state.load()

        self.registry, errors = CommandRegistry.load(self._command_sources)
        self.dispatcher = Dispatcher(
            transport=self.transport,
            registry=self.registry,
            access=self.access,
            chat_state=self.chat_state,
            cache=self.cache,
            bot_username=me.username,
            fallback=self.assistant,
        )

        try:
            await self.dispatcher.announce_commands()
        except TransportError as e:
            logger.error("commands_announce_failed", error=str(e))

        self.running = True
        self.poll_task = self.transport.start_polling(self._on_message)
        logger.info(
            "bot_started",
            commands=len(self.registry.all_definitions()),
            rejected=len(errors),
            chats=len(self.chat_state),
        )

    async def _on_message(self, message: Message):
        """Schedule a message so slow handlers don't block polling."""
        t = asyncio.create_task(self.dispatcher.handle_message(message))
        self._tasks.add(t)
        t.add_done_callback(self._tasks.discard)
        t.add_done_callback(log_task_exception)

    async def stop(self):
        """Stop polling, let in-flight messages finish, close sessions.

        Raises whatever stop_polling() raises, so the caller can report
        an unclean shutdown.
        """
        if not self.running:
            return
        self.running = False

        try:
            await self.transport.stop_polling()
        finally:
            if self._tasks:
                done, pending = await asyncio.wait(
                    set(self._tasks), timeout=self.config.shutdown_grace_seconds,
                )
                for t in pending:
                    t.cancel()
                if pending:
                    logger.warning("dispatch_tasks_abandoned", count=len(pending))
            if self.assistant:
                await self.assistant.close()
            await self.transport.close()
        logger.info("bot_stopped")
