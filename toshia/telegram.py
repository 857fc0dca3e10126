"""Telegram Bot API client for Toshia.

Talks to the Bot API over HTTPS with a shared aiohttp session. Inbound
messages arrive by long-polling getUpdates and are handed to a callback
one at a time; the callback decides how to schedule them.

Key classes:
    User, Chat, Message, Update: Pydantic models for the Bot API
        objects the dispatcher reads.
    TelegramClient: API calls (getMe, sendMessage,
        getChatAdministrators, setMyCommands) and the polling loop.
"""

import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple

import aiohttp
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import ErrorCategory, TransportError

logger = structlog.get_logger("toshia.telegram")

GROUP_CHAT_TYPES = frozenset({"group", "supergroup"})


class User(BaseModel):
    """A Telegram user or bot."""
    model_config = ConfigDict(extra="ignore")

    id: int
    is_bot: bool = False
    first_name: str = ""
    username: Optional[str] = None


class Chat(BaseModel):
    """A Telegram chat. ``type`` is private, group, supergroup or channel."""
    model_config = ConfigDict(extra="ignore")

    id: int
    type: str
    title: Optional[str] = None

    @property
    def is_group(self) -> bool:
        return self.type in GROUP_CHAT_TYPES

    @property
    def is_private(self) -> bool:
        return self.type == "private"


class Message(BaseModel):
    """An inbound message. Only the fields the dispatcher reads."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    message_id: int
    chat: Chat
    from_user: Optional[User] = Field(default=None, alias="from")
    text: Optional[str] = None
    date: int = 0

    @property
    def sender_id(self) -> Optional[int]:
        return self.from_user.id if self.from_user else None


class Update(BaseModel):
    """One getUpdates entry. Non-message updates leave ``message`` unset."""
    model_config = ConfigDict(extra="ignore")

    update_id: int
    message: Optional[Message] = None


class ChatMember(BaseModel):
    """Entry in a getChatAdministrators result."""
    model_config = ConfigDict(extra="ignore")

    user: User
    status: str = ""


class TelegramClient:
    """Bot API client with a long-polling receive loop.

    Args:
        token: Bot token from @BotFather.
        api_url: Bot API base URL.
        poll_timeout: Long-poll timeout in seconds.
    """

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.telegram.org",
        poll_timeout: int = 30,
    ):
        self._token = token
        self.api_url = api_url.rstrip("/")
        self.poll_timeout = poll_timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._offset = 0
        self._polling = False
        self._poll_task: Optional[asyncio.Task] = None
        self.me: Optional[User] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the shared aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        """Close the shared HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _call(
        self, method: str, request_timeout: Optional[float] = None, **params: Any
    ) -> Any:
        """Invoke a Bot API method and return its ``result``.

        Raises:
            TransportError: On network failure, timeout, non-JSON reply,
                or a reply with ``ok: false``.
        """
        url = f"{self.api_url}/bot{self._token}/{method}"
        payload = {k: v for k, v in params.items() if v is not None}
        client_timeout = aiohttp.ClientTimeout(total=request_timeout or 30)
        try:
            session = await self._get_session()
            async with session.post(url, json=payload, timeout=client_timeout) as resp:
                try:
                    data = await resp.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    body = await resp.text()
                    raise TransportError(
                        f"Non-JSON response from {method}",
                        method=method, status=resp.status, body=body[:200],
                    )
                if not isinstance(data, dict) or not data.get("ok"):
                    description = data.get("description", "") if isinstance(data, dict) else ""
                    category = (
                        ErrorCategory.TRANSIENT if resp.status >= 500 or resp.status == 429
                        else ErrorCategory.PERMANENT
                    )
                    raise TransportError(
                        description or f"{method} failed",
                        method=method, status=resp.status, category=category,
                    )
                return data.get("result")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"{method} request failed: {type(e).__name__}",
                method=method, error=str(e),
            ) from e

    # --- API methods ---

    async def get_me(self) -> User:
        """Fetch the bot's own account. Fails fast on a bad token."""
        self.me = User.model_validate(await self._call("getMe", request_timeout=10))
        return self.me

    @property
    def username(self) -> Optional[str]:
        """The bot's @username, known after get_me()."""
        return self.me.username if self.me else None

    async def send_message(self, chat_id: int, text: str) -> bool:
        """Send a text message. Failures are logged, not raised.

        Returns:
            True if Telegram accepted the message.
        """
        try:
            await self._call("sendMessage", chat_id=chat_id, text=text)
            return True
        except TransportError as e:
            logger.error(
                "send_failed", chat_id=chat_id, status=e.status, error=e.message
            )
            return False

    async def get_chat_administrators(self, chat_id: int) -> List[ChatMember]:
        """List a group's administrators.

        Raises:
            TransportError: If the request fails or the result is malformed.
        """
        result = await self._call("getChatAdministrators", chat_id=chat_id)
        try:
            return [ChatMember.model_validate(m) for m in result or []]
        except ValidationError as e:
            raise TransportError(
                "Malformed getChatAdministrators result",
                method="getChatAdministrators",
                category=ErrorCategory.PERMANENT,
                error=str(e)[:200],
            ) from e

    async def set_my_commands(self, commands: Iterable[Tuple[str, str]]) -> None:
        """Publish the (name, description) command list to Telegram.

        Raises:
            TransportError: If the request fails.
        """
        await self._call(
            "setMyCommands",
            commands=[{"command": name, "description": desc} for name, desc in commands],
        )

    async def get_updates(self) -> List[Update]:
        """Long-poll for new updates past the current offset.

        Does not move the offset; call acknowledge() once an update has
        been handed off. Unparseable updates come back with no message so
        they are still acknowledged in order.
        """
        result = await self._call(
            "getUpdates",
            request_timeout=self.poll_timeout + 10,
            offset=self._offset or None,
            timeout=self.poll_timeout,
            allowed_updates=["message"],
        )
        updates = []
        for raw in result or []:
            update_id = raw.get("update_id") if isinstance(raw, dict) else None
            try:
                updates.append(Update.model_validate(raw))
            except ValidationError as e:
                logger.warning("invalid_update", update_id=update_id, error=str(e)[:200])
                if isinstance(update_id, int):
                    updates.append(Update(update_id=update_id))
        return updates

    def acknowledge(self, update: Update) -> None:
        """Move the offset past ``update`` so Telegram stops resending it."""
        self._offset = max(self._offset, update.update_id + 1)

    # --- Polling ---

    @property
    def is_polling(self) -> bool:
        return self._polling

    def start_polling(self, on_message: Callable[[Message], Awaitable[None]]) -> asyncio.Task:
        """Start the getUpdates loop in a background task.

        ``on_message`` is awaited for each message in arrival order, so
        it should schedule slow work rather than run it inline.
        """
        if self._poll_task is not None and not self._poll_task.done():
            return self._poll_task
        self._polling = True
        self._poll_task = asyncio.create_task(self._poll_loop(on_message))
        return self._poll_task

    async def stop_polling(self) -> None:
        """Stop accepting updates and wait for the poll loop to exit."""
        self._polling = False
        task = self._poll_task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("polling_stopped")

    async def _poll_loop(self, on_message: Callable[[Message], Awaitable[None]]):
        """Receive updates until stop_polling(), backing off on errors."""
        retry_delay = 1
        MAX_RETRY_DELAY = 60

        logger.info("polling_started", username=self.username)
        while self._polling:
            try:
                updates = await self.get_updates()
                retry_delay = 1
            except TransportError as e:
                if e.is_unauthorized:
                    logger.error("polling_unauthorized", status=e.status, error=e.message)
                    self._polling = False
                    break
                logger.warning(
                    "polling_error", error=str(e), retry_delay=retry_delay,
                )
                await asyncio.sleep(retry_delay)
                retry_delay = min(retry_delay * 2, MAX_RETRY_DELAY)
                continue

            for update in updates:
                if not self._polling:
                    break
                if update.message is not None:
                    await on_message(update.message)
                self.acknowledge(update)
