"""Telegram notification sink."""

from typing import Optional

from loguru import logger

from ....core.enums import TerminationReason
from ...mailbox.models import NewMessageEvent
from ..base import NotificationSink, TelegramConfig
from ..message_templates import MessageTemplates
from ..telegram_client import TelegramClient


class TelegramNotificationSink(NotificationSink):
    """Delivers engine events to the user's Telegram chat (chat id == user id)."""

    def __init__(self, config: TelegramConfig, client: Optional[TelegramClient] = None):
        """
        Initialize Telegram sink.

        Args:
            config: Telegram configuration
            client: Pre-built client (built lazily from ``config`` otherwise)
        """
        self._config = config
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def _get_or_create_client(self) -> Optional[TelegramClient]:
        """Get cached client or create new one."""
        if self._client is not None:
            return self._client

        if not self._config.bot_token:
            logger.error("Telegram bot_token missing")
            return None

        try:
            self._client = TelegramClient(bot_token=self._config.bot_token)
        except ImportError:
            logger.warning("python-telegram-bot not installed")
            return None
        except Exception as e:
            logger.error(f"Failed to create Telegram client: {e}")
            return None
        return self._client

    async def _send(self, user_id: int, text: str) -> bool:
        if not self.enabled:
            logger.debug(f"Telegram disabled, not notifying user {user_id}")
            return False

        client = self._get_or_create_client()
        if client is None:
            return False
        return await client.send_message(
            chat_id=str(user_id), text=text, parse_mode=self._config.parse_mode
        )

    async def on_new_message(self, user_id: int, event: NewMessageEvent) -> bool:
        text = MessageTemplates.new_message(
            sender=event.sender,
            subject=event.subject,
            preview=event.body_preview,
            otp=event.otp,
            escape=TelegramClient.escape_markdown,
        )
        sent = await self._send(user_id, text)
        if sent:
            logger.info(f"New-mail notification sent to user {user_id} (message {event.message_id})")
        return sent

    async def on_session_terminated(self, user_id: int, reason: TerminationReason) -> bool:
        return await self._send(user_id, MessageTemplates.session_terminated(reason))
