"""Main entry point for Toshia.

Initializes logging in two phases (defaults then config-driven),
validates configuration, starts the ToshiaBot, and waits for SIGINT or
SIGTERM. Shutdown first stops polling, then exits.

Exit codes:
    0: Clean shutdown.
    1: Missing token, startup failure, polling stopped by Telegram
       (revoked token), or unclean shutdown.

Key functions:
    main: Async entry point, returns the exit code.
    run: Synchronous wrapper for the ``toshia`` console script.
"""

import asyncio
import signal
import sys

import structlog

from . import __version__
from .logging_config import setup_logging

EXIT_OK = 0
EXIT_FAILURE = 1


async def main() -> int:
    """Main async entry point."""
    # Phase 1: defaults, cache_logger_on_first_use=False
    setup_logging()
    logger = structlog.get_logger("toshia")

    logger.info("toshia_starting", version=__version__)

    # Import here to ensure logging is configured first
    from .bot import ToshiaBot
    from .config import get_config
    from .exceptions import ConfigurationError, StartupError

    config = get_config()
    try:
        config.validate()
    except ConfigurationError as e:
        logger.error("configuration_error", setting=e.setting_name, error=e.message)
        return EXIT_FAILURE

    # Phase 2: reconfigure with real config, cache_logger_on_first_use=True
    setup_logging(config)

    bot = ToshiaBot(config)
    try:
        await bot.start()
    except StartupError as e:
        logger.error("startup_failed", error=str(e))
        await bot.transport.close()
        return EXIT_FAILURE

    # Setup graceful shutdown
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def handle_shutdown(sig):
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_shutdown, sig)
        except NotImplementedError:
            # Windows: add_signal_handler not supported.
            if sig == signal.SIGINT:
                signal.signal(
                    signal.SIGINT,
                    lambda s, f: loop.call_soon_threadsafe(handle_shutdown, signal.SIGINT),
                )

    # Polling also ends on its own if Telegram revokes the token
    signal_wait = asyncio.ensure_future(shutdown_event.wait())
    await asyncio.wait({signal_wait, bot.poll_task}, return_when=asyncio.FIRST_COMPLETED)
    polling_lost = not shutdown_event.is_set()
    signal_wait.cancel()
    if polling_lost:
        logger.error("polling_ended_unexpectedly")

    logger.info("toshia_shutting_down")
    try:
        await bot.stop()
    except Exception as e:
        logger.error("shutdown_failed", error=str(e), error_type=type(e).__name__)
        return EXIT_FAILURE

    logger.info("toshia_stopped")
    return EXIT_FAILURE if polling_lost else EXIT_OK


def run():
    """Synchronous entry point for the ``toshia`` console script."""
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        code = EXIT_FAILURE
    sys.exit(code)


if __name__ == "__main__":
    run()
