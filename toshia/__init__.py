"""Toshia: a Telegram command bot."""

__version__ = "1.0.0"
