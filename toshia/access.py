"""Per-command access control.

Each command declares a tier: ``anyone`` always passes, ``admin``
requires the caller to be a Telegram administrator of the chat, and
``operator`` requires the caller to be the single configured bot owner.
Admin checks never fail open: if the administrator list cannot be
fetched the command is denied.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog

from .commands.base import AccessTier
from .exceptions import TransportError

logger = structlog.get_logger("toshia.commands")


class AccessReason(str, Enum):
    """Why an access check came out the way it did."""
    GRANTED = "granted"
    DENIED = "denied"
    CHECK_FAILED = "check_failed"
    INVALID_TIER = "invalid_tier"


@dataclass(frozen=True)
class AccessResult:
    """Outcome of an access check. ``message`` is shown to the user on denial."""
    granted: bool
    message: Optional[str] = None
    reason: AccessReason = AccessReason.GRANTED

    @classmethod
    def allow(cls) -> "AccessResult":
        return cls(granted=True)

    @classmethod
    def deny(cls, message: str, reason: AccessReason = AccessReason.DENIED) -> "AccessResult":
        return cls(granted=False, message=message, reason=reason)


class AccessControl:
    """Evaluates command tiers against the caller.

    Args:
        transport: Anything with ``async get_chat_administrators(chat_id)``.
        owner_uid: Telegram user id of the operator (None denies everyone).
        owner: Operator display name used in denial messages.
    """

    def __init__(self, transport, owner_uid: Optional[int], owner: str):
        self.transport = transport
        self.owner_uid = owner_uid
        self.owner = owner

    async def check_access(
        self,
        tier: str,
        chat_id: int,
        caller_id: Optional[int],
        command_name: str,
    ) -> AccessResult:
        """Decide whether ``caller_id`` may run ``command_name`` in ``chat_id``."""
        try:
            access = AccessTier(tier)
        except ValueError:
            logger.error(
                "access_tier_misconfigured", command=command_name, access=tier,
            )
            return AccessResult.deny(
                f"Invalid access level for command {command_name}.",
                reason=AccessReason.INVALID_TIER,
            )

        if access is AccessTier.ANYONE:
            return AccessResult.allow()

        if access is AccessTier.ADMIN:
            return await self._check_admin(chat_id, caller_id, command_name)

        if caller_id is None or self.owner_uid is None or caller_id != self.owner_uid:
            return AccessResult.deny(
                f"You don't have permission to use {command_name}. "
                f"Only {self.owner} can use it."
            )
        return AccessResult.allow()

    async def _check_admin(
        self, chat_id: int, caller_id: Optional[int], command_name: str,
    ) -> AccessResult:
        try:
            admins = await self.transport.get_chat_administrators(chat_id)
        except (TransportError, ValueError) as e:
            logger.error(
                "admin_check_failed",
                chat_id=chat_id,
                command=command_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return AccessResult.deny(
                "Error checking admin permissions.",
                reason=AccessReason.CHECK_FAILED,
            )

        if caller_id is not None and any(m.user.id == caller_id for m in admins):
            return AccessResult.allow()
        return AccessResult.deny(
            f"You don't have permission to use {command_name}. "
            "Only group admins can use it."
        )
