"""Logging setup for Toshia.

structlog renders events; stdlib logging routes them. Every module logs
through ``structlog.get_logger("toshia.<subsystem>")`` and the event
lands in three places::

    console                     (root handler, global level)
    logs/toshia.log             (combined, "toshia" logger)
    logs/<subsystem>.log        (one per entry in SUBSYSTEMS)

Bot API request URLs contain the bot token, so every event passes
through sanitize_secrets before rendering.
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, Dict, NamedTuple

import structlog

LOGGER_PREFIX = "toshia"

# bot: lifecycle and dispatch; commands: registry, handlers, access;
# state: chat-state file; telegram: Bot API transport; assistant: AI fallback
SUBSYSTEMS = ("bot", "commands", "state", "telegram", "assistant")

_REDACTED = "***REDACTED***"

_SECRET_PATTERNS = (
    re.compile(r"\d{6,12}:[A-Za-z0-9_-]{30,}"),    # Telegram bot token
    re.compile(r"sk-[a-zA-Z0-9_-]{20,}"),          # OpenAI-style API key
    re.compile(r"Bearer\s+[a-zA-Z0-9_./-]{20,}"),  # Authorization header
)


def _scrub_value(value: str) -> str:
    for pattern in _SECRET_PATTERNS:
        value = pattern.sub(_REDACTED, value)
    return value


def _scrub(value: Any) -> Any:
    """Scrub a string, or the strings one level inside a container."""
    if isinstance(value, str):
        return _scrub_value(value)
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub_value(v) if isinstance(v, str) else v for v in value)
    if isinstance(value, dict):
        return {k: _scrub_value(v) if isinstance(v, str) else v for k, v in value.items()}
    return value


def sanitize_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor that redacts bot tokens and API keys."""
    for key in list(event_dict):
        event_dict[key] = _scrub(event_dict[key])
    return event_dict


class _LogSettings(NamedTuple):
    log_dir: Path
    level: int
    subsystem_levels: Dict[str, str]
    max_bytes: int
    backup_count: int
    cache_loggers: bool


def _level(name: str, default: int) -> int:
    return getattr(logging, name.upper(), default) if name else default


def _resolve_settings(config) -> _LogSettings:
    """Defaults before config is loaded, config values afterwards."""
    if config is None:
        return _LogSettings(
            log_dir=Path(__file__).parent.parent / "logs",
            level=logging.INFO,
            subsystem_levels={},
            max_bytes=10 * 1024 * 1024,
            backup_count=5,
            cache_loggers=False,
        )
    return _LogSettings(
        log_dir=config.log_dir,
        level=_level(config.logging_level, logging.INFO),
        subsystem_levels=config.logging_subsystem_levels,
        max_bytes=config.logging_max_file_size_mb * 1024 * 1024,
        backup_count=config.logging_backup_count,
        cache_loggers=True,
    )


def _rotating_handler(
    path: Path, level: int, settings: _LogSettings, formatter: logging.Formatter
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=settings.max_bytes,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _reset_logger(name: str, level: int) -> logging.Logger:
    stdlib_logger = logging.getLogger(name)
    stdlib_logger.setLevel(level)
    stdlib_logger.handlers.clear()
    stdlib_logger.propagate = True
    return stdlib_logger


def setup_logging(config=None) -> None:
    """Configure console and rotating file logging.

    Called twice by main(): once with no config so startup errors are
    visible, and again once config has loaded. The second call replaces
    the handlers installed by the first and turns on structlog's logger
    cache.

    If the log directory cannot be created, logging continues on the
    console only.

    Args:
        config: Optional Config instance.
    """
    settings = _resolve_settings(config)

    try:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        write_files = True
    except OSError as exc:
        print(
            f"WARNING: Cannot create log directory {settings.log_dir}: {exc}. "
            "Logging to console only.",
            file=sys.stderr,
        )
        write_files = False

    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
    )

    root = _reset_logger("", logging.DEBUG)
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(settings.level)
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    root.addHandler(console)

    combined = _reset_logger(LOGGER_PREFIX, logging.DEBUG)
    if write_files:
        combined.addHandler(_rotating_handler(
            settings.log_dir / "toshia.log", settings.level, settings, file_formatter,
        ))

    for subsystem in SUBSYSTEMS:
        level = _level(settings.subsystem_levels.get(subsystem, ""), settings.level)
        sub_logger = _reset_logger(f"{LOGGER_PREFIX}.{subsystem}", level)
        if write_files:
            sub_logger.addHandler(_rotating_handler(
                settings.log_dir / f"{subsystem}.log", level, settings, file_formatter,
            ))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            sanitize_secrets,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=settings.cache_loggers,
    )
