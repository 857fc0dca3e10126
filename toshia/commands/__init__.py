"""Command handler framework for Toshia.

Provides the command registry, definition/context/result types, and
the explicit list of command sources loaded at startup.
"""

from typing import Any, Dict, List

from .base import (
    AccessTier,
    BaseCommandHandler,
    CommandContext,
    CommandDefinition,
    CommandRegistry,
    CommandResult,
)
from .core import CoreCommandHandler


def builtin_sources() -> List[Dict[str, Any]]:
    """Every command source the bot registers at startup."""
    handlers: List[BaseCommandHandler] = [CoreCommandHandler()]
    sources: List[Dict[str, Any]] = []
    for handler in handlers:
        sources.extend(handler.get_commands())
    return sources


__all__ = [
    "AccessTier",
    "BaseCommandHandler",
    "CommandContext",
    "CommandDefinition",
    "CommandRegistry",
    "CommandResult",
    "CoreCommandHandler",
    "builtin_sources",
]
