"""Per-chat feature flags persisted to a JSON file.

Every group the bot sees gets a record of four boolean toggles. The
whole map is rewritten on each save.

Key classes:
    ChatState: Pydantic model for one chat's flags.
    ChatStateStore: In-memory map plus load/save to disk.

File format::

    {
        "-1001234567890": {
            "ai": true,
            "bot": true,
            "meme": true,
            "noti": true
        }
    }
"""

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Union

import structlog
from pydantic import BaseModel, ValidationError

from .exceptions import PersistenceError

logger = structlog.get_logger("toshia.state")

FLAGS = ("ai", "bot", "meme", "noti")

ChatId = Union[int, str]


class ChatState(BaseModel):
    """Feature toggles for a single chat. All default to on."""

    ai: bool = True
    bot: bool = True
    meme: bool = True
    noti: bool = True


def _key(chat_id: ChatId) -> str:
    """Chat ids are stored as strings, matching JSON object keys."""
    return str(chat_id)


class ChatStateStore:
    """Owns the chat-state map for the running process.

    The in-memory map is authoritative; a failed save is logged and the
    next successful save catches the file up. There is no locking:
    concurrent saves from different chats are last-write-wins.

    Args:
        path: Location of the JSON file.
    """

    def __init__(self, path: Path):
        self.path = path
        self._chats: Dict[str, ChatState] = {}

    @property
    def chats(self) -> Dict[str, ChatState]:
        """Snapshot copy of the current map."""
        return {k: v.model_copy() for k, v in self._chats.items()}

    def ensure_file(self) -> None:
        """Create the file with an empty map if it does not exist yet.

        Raises:
            PersistenceError: If the file or its directory cannot be created.
        """
        if self.path.exists():
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps({}, indent=4), encoding="utf-8")
        except OSError as e:
            raise PersistenceError(
                "Error creating database file", path=str(self.path), error=str(e)
            ) from e
        logger.info("chat_state_file_created", path=str(self.path))

    def load(self) -> Dict[str, ChatState]:
        """Load the map from disk, replacing the in-memory copy.

        Read or parse failures leave an empty map; single bad entries
        are skipped. Never raises.
        """
        self._chats = {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.info("chat_state_file_missing", path=str(self.path))
            return self.chats
        except (OSError, json.JSONDecodeError) as e:
            logger.error("chat_state_load_failed", path=str(self.path), error=str(e))
            return self.chats

        if not isinstance(raw, dict):
            logger.error(
                "chat_state_load_failed",
                path=str(self.path),
                error=f"expected object, got {type(raw).__name__}",
            )
            return self.chats

        for chat_id, flags in raw.items():
            try:
                self._chats[_key(chat_id)] = ChatState.model_validate(flags)
            except ValidationError as e:
                logger.warning(
                    "chat_state_entry_invalid", chat_id=chat_id, error=str(e)[:200]
                )

        logger.info("chat_state_loaded", chats=len(self._chats))
        return self.chats

    def save(self) -> bool:
        """Write the full map to disk, replacing prior contents.

        Writes to a temporary sibling and renames it over the target, so
        a failure leaves the previous file untouched.

        Returns:
            True on success, False if the write failed (already logged).
        """
        payload = {k: v.model_dump() for k, v in self._chats.items()}
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=4)
            os.replace(tmp_name, self.path)
        except OSError as e:
            logger.error("chat_state_save_failed", path=str(self.path), error=str(e))
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
            return False

        logger.debug("chat_state_saved", chats=len(payload))
        return True

    def ensure_chat(self, chat_id: ChatId) -> bool:
        """Create a default record for ``chat_id`` if none exists.

        Saves immediately on creation. Repeat calls are no-ops.

        Returns:
            True if a record was created.
        """
        key = _key(chat_id)
        if key in self._chats:
            return False
        self._chats[key] = ChatState()
        self.save()
        logger.info("chat_added", chat_id=key)
        return True

    def get(self, chat_id: ChatId) -> Optional[ChatState]:
        """Return the record for ``chat_id``, or None if unknown."""
        return self._chats.get(_key(chat_id))

    def set_flag(self, chat_id: ChatId, flag: str, value: bool) -> ChatState:
        """Set one flag on an existing chat. Not saved until save().

        Raises:
            KeyError: If the chat is unknown.
            ValueError: If ``flag`` is not one of FLAGS.
        """
        if flag not in FLAGS:
            raise ValueError(f"Unknown flag: {flag!r}")
        state = self._chats[_key(chat_id)]
        setattr(state, flag, value)
        return state

    def __contains__(self, chat_id: ChatId) -> bool:
        return _key(chat_id) in self._chats

    def __len__(self) -> int:
        return len(self._chats)
