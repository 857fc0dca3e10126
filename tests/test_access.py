"""Tests for per-command access control."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from toshia.access import AccessControl, AccessReason
from toshia.exceptions import TransportError
from toshia.telegram import ChatMember, User

OWNER_ID = 1001
OTHER_ID = 2002
CHAT_ID = -100500


def _admins(*ids):
    return [ChatMember(user=User(id=i), status="administrator") for i in ids]


def _access(admins=None, admin_error=None):
    transport = MagicMock()
    transport.get_chat_administrators = AsyncMock(
        return_value=admins or [], side_effect=admin_error,
    )
    return AccessControl(transport, owner_uid=OWNER_ID, owner="Kuroi"), transport


@pytest.mark.asyncio
async def test_anyone_is_always_granted():
    access, transport = _access()
    result = await access.check_access("anyone", CHAT_ID, OTHER_ID, "ping")
    assert result.granted is True
    assert result.message is None
    transport.get_chat_administrators.assert_not_called()


@pytest.mark.asyncio
async def test_operator_granted_for_owner():
    access, _ = _access()
    result = await access.check_access("operator", CHAT_ID, OWNER_ID, "shutdown")
    assert result.granted is True


@pytest.mark.asyncio
async def test_operator_denied_names_owner():
    access, _ = _access()
    result = await access.check_access("operator", CHAT_ID, OTHER_ID, "shutdown")
    assert result.granted is False
    assert result.reason is AccessReason.DENIED
    assert "Kuroi" in result.message
    assert "shutdown" in result.message


@pytest.mark.asyncio
async def test_operator_denied_when_owner_not_configured():
    access = AccessControl(MagicMock(), owner_uid=None, owner="Kuroi")
    result = await access.check_access("operator", CHAT_ID, OWNER_ID, "shutdown")
    assert result.granted is False


@pytest.mark.asyncio
async def test_admin_granted_when_caller_is_admin():
    access, transport = _access(admins=_admins(7, OTHER_ID))
    result = await access.check_access("admin", CHAT_ID, OTHER_ID, "group")
    assert result.granted is True
    transport.get_chat_administrators.assert_awaited_once_with(CHAT_ID)


@pytest.mark.asyncio
async def test_admin_denied_when_caller_not_admin():
    access, _ = _access(admins=_admins(7))
    result = await access.check_access("admin", CHAT_ID, OTHER_ID, "group")
    assert result.granted is False
    assert result.reason is AccessReason.DENIED
    assert "Only group admins" in result.message


@pytest.mark.asyncio
async def test_admin_check_failure_denies():
    access, _ = _access(admin_error=TransportError("boom", method="getChatAdministrators"))
    result = await access.check_access("admin", CHAT_ID, OTHER_ID, "group")
    assert result.granted is False
    assert result.reason is AccessReason.CHECK_FAILED
    assert result.message == "Error checking admin permissions."


@pytest.mark.asyncio
async def test_malformed_admin_list_denies():
    access, _ = _access(admin_error=ValueError("malformed chat member"))
    result = await access.check_access("admin", CHAT_ID, OTHER_ID, "group")
    assert result.granted is False
    assert result.reason is AccessReason.CHECK_FAILED


@pytest.mark.asyncio
async def test_invalid_tier_is_denied_and_distinguished():
    access, _ = _access()
    result = await access.check_access("superuser", CHAT_ID, OWNER_ID, "nuke")
    assert result.granted is False
    assert result.reason is AccessReason.INVALID_TIER
    assert "nuke" in result.message
