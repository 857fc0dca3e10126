"""Transient cache directory shared by command handlers.

Handlers may drop downloaded media or rendered files here. The
dispatcher clears it after every command invocation, so nothing
survives from one command to the next.
"""

import shutil
from pathlib import Path

import structlog

from .exceptions import StartupError

logger = structlog.get_logger("toshia.commands")


class CacheDirectory:
    """A directory that is emptied after each command.

    Args:
        path: Directory path. Created by ensure() if missing.
    """

    def __init__(self, path: Path):
        self.path = path

    def ensure(self) -> None:
        """Create the directory (and parents) if it does not exist.

        Raises:
            StartupError: If the directory cannot be created.
        """
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StartupError(
                "Error creating cache directory", path=str(self.path), error=str(e)
            ) from e

    def clear(self) -> int:
        """Delete everything inside the directory, subdirectories included.

        An entry that cannot be removed is logged and skipped so the
        rest still get cleaned.

        Returns:
            Number of top-level entries removed.
        """
        if not self.path.is_dir():
            return 0

        deleted = 0
        for entry in self.path.iterdir():
            try:
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
                deleted += 1
                logger.debug("cache_entry_deleted", path=str(entry))
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("cache_entry_delete_failed", path=str(entry), error=str(e))
        return deleted
