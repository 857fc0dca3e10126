"""Base classes for the command handler framework.

Command definitions are plain mappings (name, description, access,
usage, author, category, aliases, handler) collected into an explicit
list at startup. CommandRegistry.load() validates them and indexes each
one under its name and aliases; the dispatcher looks commands up from
there.

Key classes:
    AccessTier: Who may run a command.
    CommandDefinition: Validated, immutable command descriptor.
    CommandContext: Everything a handler receives per invocation.
    CommandResult: Explicit success/failure outcome from a handler.
    BaseCommandHandler: ABC for groups of related commands.
    CommandRegistry: Name/alias index built once at startup.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
)

import structlog

from ..exceptions import CommandDefinitionError

if TYPE_CHECKING:
    from ..chat_state import ChatStateStore
    from ..telegram import Message, TelegramClient

logger = structlog.get_logger("toshia.commands")

REQUIRED_FIELDS = ("name", "description", "access", "author", "category")


class AccessTier(str, Enum):
    """Access level declared per command."""
    ANYONE = "anyone"
    ADMIN = "admin"
    OPERATOR = "operator"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a handler call.

    Attributes:
        ok: Whether the command succeeded.
        message: Optional user-facing text. On failure it replaces the
            generic error reply.
    """
    ok: bool = True
    message: Optional[str] = None

    @classmethod
    def success(cls, message: Optional[str] = None) -> "CommandResult":
        return cls(ok=True, message=message)

    @classmethod
    def failure(cls, message: Optional[str] = None) -> "CommandResult":
        return cls(ok=False, message=message)


@dataclass
class CommandContext:
    """Per-invocation context passed to a command handler.

    Attributes:
        transport: Telegram client, for sending messages or files.
        chat_id: Chat the command was sent in.
        caller_id: Telegram user id of the sender.
        args: Whitespace-separated words after the command name.
        message: The original inbound message.
        usages: Async callable that sends the command's usage text.
        chat_state: Shared chat-state store.
        registry: The command registry (for help listings).
        cache_dir: Scratch directory, emptied after the command returns.
    """
    transport: "TelegramClient"
    chat_id: int
    caller_id: Optional[int]
    args: List[str]
    message: "Message"
    usages: Callable[[], Awaitable[None]]
    chat_state: "ChatStateStore"
    registry: "CommandRegistry"
    cache_dir: Optional[Path] = None

    async def reply(self, text: str) -> None:
        """Send ``text`` to the chat the command came from."""
        await self.transport.send_message(self.chat_id, text)


Handler = Callable[[CommandContext], Awaitable[Optional[CommandResult]]]


@dataclass(frozen=True)
class CommandDefinition:
    """Validated command descriptor. Name and aliases are lowercase."""
    name: str
    description: str
    access: str
    author: str
    category: str
    handler: Handler = field(repr=False, compare=False)
    usage: Tuple[str, ...] = ()
    aliases: Tuple[str, ...] = ()

    @property
    def tier(self) -> Optional[AccessTier]:
        """The access tier, or None if ``access`` is not a known tier."""
        try:
            return AccessTier(self.access)
        except ValueError:
            return None

    def format_usage(self) -> str:
        """Render usage templates, one ``/<name> <usage>`` line each."""
        if not self.usage:
            return f"/{self.name}"
        return "\n".join(f"/{self.name} {u}".rstrip() for u in self.usage)

    @classmethod
    def from_source(cls, source: Mapping[str, Any]) -> "CommandDefinition":
        """Validate a raw command source and build a definition.

        Raises:
            CommandDefinitionError: If a required field is missing or
                empty, or the handler is not callable.
        """
        missing = [
            f for f in REQUIRED_FIELDS
            if not isinstance(source.get(f), str) or not source.get(f).strip()
        ]
        handler = source.get("handler")
        if not callable(handler):
            missing.append("handler")

        label = source.get("name") if isinstance(source.get("name"), str) else None
        if missing:
            raise CommandDefinitionError(
                "Invalid command definition",
                source_name=label,
                missing=missing,
            )

        usage = source.get("usage") or ()
        if isinstance(usage, str):
            usage = (usage,)
        aliases = source.get("aliases") or ()
        if isinstance(aliases, str):
            aliases = (aliases,)

        return cls(
            name=source["name"].strip().lower(),
            description=source["description"].strip(),
            access=source["access"].strip().lower(),
            author=source["author"].strip(),
            category=source["category"].strip(),
            handler=handler,
            usage=tuple(str(u) for u in usage),
            aliases=tuple(a.strip().lower() for a in aliases if isinstance(a, str) and a.strip()),
        )


class BaseCommandHandler(ABC):
    """Abstract base class for command groups.

    Subclasses implement get_commands() to return command sources whose
    ``handler`` entries are bound methods of the group.
    """

    @abstractmethod
    def get_commands(self) -> List[Dict[str, Any]]:
        """Return a list of command source mappings.

        Handler signature: async (ctx: CommandContext) -> Optional[CommandResult]
        """
        ...


class CommandRegistry:
    """Maps lowercase command names and aliases to definitions.

    Built once by load(); there is no way to add commands afterwards.
    Alias collisions are last-write-wins and logged.
    """

    def __init__(self, definitions: Iterable[CommandDefinition] = ()):
        self._commands: Dict[str, CommandDefinition] = {}
        self._definitions: List[CommandDefinition] = []
        for definition in definitions:
            self._add(definition)

    def _add(self, definition: CommandDefinition) -> None:
        for key in (definition.name, *definition.aliases):
            existing = self._commands.get(key)
            if existing is not None and existing is not definition:
                logger.warning(
                    "command_alias_conflict",
                    key=key,
                    previous=existing.name,
                    command=definition.name,
                )
            self._commands[key] = definition
        self._definitions.append(definition)

    @classmethod
    def load(
        cls, sources: Iterable[Mapping[str, Any]]
    ) -> Tuple["CommandRegistry", List[CommandDefinitionError]]:
        """Validate command sources and build a registry.

        Invalid sources are logged and skipped; loading continues.

        Args:
            sources: Raw command mappings, in registration order.

        Returns:
            Tuple of (registry, errors for each rejected source).
        """
        definitions: List[CommandDefinition] = []
        errors: List[CommandDefinitionError] = []

        for index, source in enumerate(sources):
            try:
                definition = CommandDefinition.from_source(source)
            except CommandDefinitionError as e:
                logger.warning(
                    "command_definition_invalid",
                    command=e.source_name or f"#{index}",
                    missing=e.missing,
                )
                errors.append(e)
                continue

            if definition.tier is None:
                logger.error(
                    "command_access_tier_invalid",
                    command=definition.name,
                    access=definition.access,
                )
            definitions.append(definition)

        registry = cls(definitions)
        logger.info(
            "commands_loaded",
            commands=len(registry.all_definitions()),
            keys=len(registry.command_names),
            rejected=len(errors),
        )
        return registry, errors

    def lookup(self, name: str) -> Optional[CommandDefinition]:
        """Case-insensitive lookup by name or alias."""
        return self._commands.get(name.lower())

    def all_definitions(self) -> List[CommandDefinition]:
        """Distinct definitions in registration order, one per primary name."""
        distinct: Dict[str, CommandDefinition] = {}
        for definition in self._definitions:
            distinct[definition.name] = definition
        return list(distinct.values())

    @property
    def command_names(self) -> List[str]:
        """Every registered key (names and aliases), in insertion order."""
        return list(self._commands.keys())

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._commands

    def __len__(self) -> int:
        return len(self._commands)
