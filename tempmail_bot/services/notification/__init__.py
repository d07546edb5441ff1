"""Notification subsystem - delivers mailbox events to chat users.

Public API:
- NotificationSink: Abstract boundary receiving engine events
- TelegramConfig: Telegram configuration
- TelegramNotificationSink: Telegram implementation of the sink
- TelegramClient: python-telegram-bot wrapper
- MessageTemplates: Text templates for every event
"""

from .base import NotificationSink, TelegramConfig
from .channels.telegram import TelegramNotificationSink
from .message_templates import MessageTemplates
from .telegram_client import TelegramClient

__all__ = [
    "NotificationSink",
    "TelegramConfig",
    "TelegramNotificationSink",
    "TelegramClient",
    "MessageTemplates",
]
