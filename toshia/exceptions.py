"""Custom exception hierarchy for Toshia.

Every error carries an ErrorCategory so callers can decide what to log,
what to show the user, and what is fatal at startup. Subclasses set
their default category and originating module as class attributes.

User input problems (unknown command, empty command, denied access) are
not exceptions: the dispatcher answers them directly.
"""

from enum import Enum
from typing import Any, List, Optional


class ErrorCategory(str, Enum):
    """Classification of errors for logging and retry decisions."""
    TRANSIENT = "transient"          # Network hiccups, Telegram 5xx
    PERMANENT = "permanent"          # Bad input, rejected request
    INFRASTRUCTURE = "infrastructure"  # Missing token, unwritable disk


class ToshiaError(Exception):
    """Base exception for all Toshia errors.

    Attributes:
        message: Human-readable error description.
        category: Error classification.
        module: Originating module name (e.g. "telegram").
        context: Arbitrary key-value pairs for structured logging.
    """

    default_category = ErrorCategory.PERMANENT
    default_module: Optional[str] = None

    def __init__(
        self,
        message: str = "",
        *,
        category: Optional[ErrorCategory] = None,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.category = category or self.default_category
        self.module = module or self.default_module
        self.context = context
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether this error is worth retrying."""
        return self.category == ErrorCategory.TRANSIENT

    def __str__(self) -> str:
        text = self.message or type(self).__name__
        if self.module:
            text += f" [module={self.module}]"
        if self.context:
            text += " (" + ", ".join(f"{k}={v}" for k, v in self.context.items()) + ")"
        return text

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, "
            f"category={self.category.value!r}, module={self.module!r})"
        )


class ConfigurationError(ToshiaError):
    """Invalid or missing configuration.

    Attributes:
        setting_name: Settings key at fault (e.g. "token").
    """

    default_category = ErrorCategory.INFRASTRUCTURE
    default_module = "config"

    def __init__(self, message: str = "", *, setting_name: Optional[str] = None, **kwargs: Any):
        self.setting_name = setting_name
        super().__init__(message, **kwargs)


class StartupError(ToshiaError):
    """Unrecoverable failure while bringing the bot up."""

    default_category = ErrorCategory.INFRASTRUCTURE
    default_module = "bot"


class TransportError(ToshiaError):
    """Error talking to the Telegram Bot API.

    Attributes:
        method: Bot API method that failed (e.g. "sendMessage").
        status: HTTP status code, if a response was received.
    """

    default_category = ErrorCategory.TRANSIENT
    default_module = "telegram"

    def __init__(
        self,
        message: str = "",
        *,
        method: Optional[str] = None,
        status: Optional[int] = None,
        **kwargs: Any,
    ):
        self.method = method
        self.status = status
        super().__init__(message, **kwargs)

    @property
    def is_unauthorized(self) -> bool:
        """True when Telegram rejected the bot token."""
        return self.status in (401, 404)


class PersistenceError(ToshiaError):
    """Error reading or writing the chat-state file."""

    default_category = ErrorCategory.INFRASTRUCTURE
    default_module = "chat_state"

    def __init__(self, message: str = "", *, path: Optional[str] = None, **kwargs: Any):
        self.path = path
        super().__init__(message, **kwargs)


class CommandDefinitionError(ToshiaError):
    """A command source failed validation and was not registered.

    Attributes:
        source_name: The command name if present.
        missing: Required fields that were absent or empty.
    """

    default_module = "commands"

    def __init__(
        self,
        message: str = "",
        *,
        source_name: Optional[str] = None,
        missing: Optional[List[str]] = None,
        **kwargs: Any,
    ):
        self.source_name = source_name
        self.missing = missing or []
        super().__init__(message, **kwargs)


class AssistantError(ToshiaError):
    """Error from the conversational fallback responder."""

    default_category = ErrorCategory.TRANSIENT
    default_module = "assistant_runner"
