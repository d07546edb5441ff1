"""Telegram client wrapper for TempMail Bot."""

import asyncio
import functools
from typing import Any, Callable, List, Optional

from loguru import logger

from ...core.retry import get_telegram_retry


def guarded_send(operation_name: str) -> Callable:
    """
    Make a Telegram coroutine return False instead of raising.

    Cancellation still propagates so shutdown is never swallowed.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> bool:
            try:
                return await func(*args, **kwargs)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Telegram {operation_name} failed: {e}")
                return False

        return wrapper

    return decorator


class TelegramClient:
    """Thin wrapper around python-telegram-bot's ``Bot``."""

    TELEGRAM_MESSAGE_LIMIT = 4096

    def __init__(self, bot_token: Optional[str] = None, bot: Any = None):
        """
        Initialize Telegram client.

        Args:
            bot_token: Telegram bot token
            bot: Pre-built ``telegram.Bot`` (or a stand-in in tests)

        Raises:
            ValueError: If neither a token nor a bot is given
        """
        if bot is not None:
            self._bot = bot
            return
        if not bot_token:
            raise ValueError("Telegram bot token is required")

        from telegram import Bot

        self._bot = Bot(token=bot_token)

    @staticmethod
    def escape_markdown(text: str) -> str:
        """
        Escape Telegram Markdown (v1) special characters.

        Args:
            text: Text to escape

        Returns:
            Escaped text safe for Markdown parse_mode
        """
        for char in ("\\", "*", "_", "`", "["):
            text = text.replace(char, "\\" + char)
        return text

    @staticmethod
    def split_message(text: str, max_length: Optional[int] = None) -> List[str]:
        """
        Split a message into chunks that fit within ``max_length``.

        Splits at newlines first, then at spaces, then hard at the limit.
        """
        if max_length is None:
            max_length = TelegramClient.TELEGRAM_MESSAGE_LIMIT

        if len(text) <= max_length:
            return [text]

        chunks = []
        remaining = text
        while remaining:
            if len(remaining) <= max_length:
                chunks.append(remaining)
                break

            split_pos = remaining.rfind("\n", 0, max_length)
            if split_pos == -1:
                split_pos = remaining.rfind(" ", 0, max_length)

            if split_pos == -1:
                chunks.append(remaining[:max_length])
                remaining = remaining[max_length:]
            else:
                chunks.append(remaining[:split_pos])
                remaining = remaining[split_pos + 1 :]

        return chunks

    @get_telegram_retry()
    async def _send_chunk(self, chat_id: str, text: str, parse_mode: Optional[str]) -> None:
        await self._bot.send_message(chat_id=chat_id, text=text, parse_mode=parse_mode)

    @guarded_send("send message")
    async def send_message(
        self, chat_id: str, text: str, parse_mode: Optional[str] = "Markdown"
    ) -> bool:
        """
        Send a text message, splitting it if it exceeds Telegram's limit.

        Returns:
            True if every chunk was sent
        """
        chunks = self.split_message(text, self.TELEGRAM_MESSAGE_LIMIT)
        for chunk in chunks:
            await self._send_chunk(chat_id, chunk, parse_mode)

        logger.debug(f"Telegram message sent ({len(chunks)} chunk(s))")
        return True
