"""Notification sink implementations."""

from .telegram import TelegramNotificationSink

__all__ = ["TelegramNotificationSink"]
