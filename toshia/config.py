"""Configuration management for Toshia.

Loads YAML settings (settings.yaml) and environment variables (.env)
into a typed Config object. Property getters provide safe access with
sensible defaults for every subsystem: Telegram transport, operator
identity, chat-state storage, cache directory, logging, and the
conversational assistant.

Key classes:
    Config: Central configuration manager.

Key functions:
    get_config: Singleton accessor for the global Config instance.
"""

import os
from pathlib import Path
from typing import Optional

import structlog
import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError

logger = structlog.get_logger("toshia.bot")


class Config:
    """Central configuration manager for Toshia.

    Loads settings.yaml and .env from the config directory. Provides
    typed property accessors for every configurable subsystem. Read-only
    after __init__.

    Args:
        config_dir: Path to the config directory. Defaults to
            ``$TOSHIA_CONFIG_DIR`` or ``<repo_root>/config/``.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            env_dir = os.environ.get("TOSHIA_CONFIG_DIR")
            config_dir = Path(env_dir) if env_dir else Path(__file__).parent.parent / "config"
        self.config_dir = config_dir

        # Load environment variables
        env_file = config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        self.settings = self._load_yaml("settings.yaml")

    def _load_yaml(self, filename: str) -> dict:
        """Load a YAML configuration file."""
        filepath = self.config_dir / filename
        if filepath.exists():
            with open(filepath, "r") as f:
                return yaml.safe_load(f) or {}
        return {}

    def _section(self, name: str) -> dict:
        """A nested settings block, or {} if absent or null."""
        return self.settings.get(name) or {}

    def validate(self):
        """Validate critical settings at startup.

        A missing bot token is fatal. Operator settings only produce
        warnings: without ``owner_uid`` every operator command is denied.

        Raises:
            ConfigurationError: If no Telegram bot token is configured.
        """
        if not self.telegram_token:
            raise ConfigurationError(
                "Telegram bot token is not defined in the configuration.",
                setting_name="token",
            )

        raw_uid = self.settings.get("owner_uid")
        if raw_uid is None:
            logger.warning("owner_uid_not_configured", msg="Operator commands will be denied")
        elif self.owner_uid is None:
            logger.error("config_invalid_value", key="owner_uid", value=str(raw_uid))

    # --- Telegram ---

    @property
    def telegram_token(self) -> str:
        """Get the bot token. Env var TELEGRAM_BOT_TOKEN takes precedence."""
        return os.environ.get("TELEGRAM_BOT_TOKEN") or self.settings.get("token", "") or ""

    @property
    def telegram_api_url(self) -> str:
        """Get the Bot API base URL (default https://api.telegram.org)."""
        return self.settings.get("telegram_api_url", "https://api.telegram.org").rstrip("/")

    @property
    def poll_timeout(self) -> int:
        """Long-poll timeout in seconds for getUpdates (default 30)."""
        return self.settings.get("poll_timeout", 30)

    # --- Operator ---

    @property
    def owner(self) -> str:
        """Display name of the bot operator, shown in denial messages."""
        return self.settings.get("owner", "the bot operator")

    @property
    def owner_uid(self) -> Optional[int]:
        """Telegram user id of the operator, or None if unset or invalid."""
        raw = self.settings.get("owner_uid")
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None

    # --- Storage ---

    @property
    def data_dir(self) -> Path:
        """Get the data directory (chat-state file and cache live here)."""
        configured = self.settings.get("data_dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "data"

    @property
    def database_file(self) -> Path:
        """Path to the persisted chat-state JSON file."""
        configured = self.settings.get("database_file")
        if configured:
            return Path(configured).expanduser()
        return self.data_dir / "group.json"

    @property
    def cache_dir(self) -> Path:
        """Path to the transient cache directory cleared after every command."""
        configured = self.settings.get("cache_dir")
        if configured:
            return Path(configured).expanduser()
        return self.data_dir / "cache"

    @property
    def shutdown_grace_seconds(self) -> float:
        """How long shutdown waits for in-flight messages (default 10)."""
        return self.settings.get("shutdown_grace_seconds", 10)

    # --- Logging ---

    @property
    def log_dir(self) -> Path:
        """Get log directory path."""
        configured = self.settings.get("log_dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "logs"

    @property
    def logging_level(self) -> str:
        """Global log level (default INFO). Controls console and combined file."""
        return self._section("logging").get("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> dict:
        """Per-subsystem log level overrides. E.g. {"telegram": "DEBUG"}."""
        return self._section("logging").get("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        """Max size per log file in MB before rotation (default 10)."""
        return self._section("logging").get("max_file_size_mb", 10)

    @property
    def logging_backup_count(self) -> int:
        """Number of rotated log files to keep (default 5)."""
        return self._section("logging").get("backup_count", 5)

    # --- Conversational assistant (any OpenAI-compatible provider) ---

    @property
    def assistant_enabled(self) -> bool:
        """Whether plain-text messages are answered by the AI assistant."""
        return self._section("assistant").get("enabled", False)

    @property
    def assistant_api_url(self) -> str:
        """Chat completions endpoint (default OpenAI)."""
        default = "https://api.openai.com/v1/chat/completions"
        return self._section("assistant").get("api_url", default)

    @property
    def assistant_api_key(self) -> str:
        """API key read from the env var named by ``assistant.api_key_env``."""
        env_name = self._section("assistant").get("api_key_env", "OPENAI_API_KEY")
        return os.environ.get(env_name, "")

    @property
    def assistant_model(self) -> str:
        """Model identifier sent to the provider (default gpt-4o-mini)."""
        return self._section("assistant").get("model", "gpt-4o-mini")

    @property
    def assistant_max_tokens(self) -> int:
        """Max tokens per assistant response (default 1024)."""
        return self._section("assistant").get("max_tokens", 1024)

    @property
    def assistant_timeout(self) -> int:
        """Assistant request timeout in seconds (default 60)."""
        return self._section("assistant").get("timeout", 60)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config
