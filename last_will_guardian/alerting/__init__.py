"""Alerting module for Last Will Guardian."""

from .telegram_client import TelegramClient
from .dispatcher import NotificationDispatcher

__all__ = ["TelegramClient", "NotificationDispatcher"]
