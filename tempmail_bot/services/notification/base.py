"""Base notification types: the sink ABC and Telegram configuration."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ...core.enums import TerminationReason

if TYPE_CHECKING:
    from ..mailbox.models import NewMessageEvent


@dataclass
class TelegramConfig:
    """Telegram notification configuration."""

    enabled: bool = False
    bot_token: Optional[str] = None
    parse_mode: str = "Markdown"

    def __repr__(self) -> str:
        """Return repr with masked bot_token."""
        masked_token = "'***'" if self.bot_token else "None"
        return (
            f"TelegramConfig(enabled={self.enabled}, bot_token={masked_token}, "
            f"parse_mode='{self.parse_mode}')"
        )


class NotificationSink(ABC):
    """Receives ready-to-display events from the mailbox engine."""

    @abstractmethod
    async def on_new_message(self, user_id: int, event: "NewMessageEvent") -> bool:
        """
        Render a newly arrived message to the user.

        Called at most once per message id per poller, never for mail that
        was already present when the poller started.

        Returns:
            True if delivered
        """

    @abstractmethod
    async def on_session_terminated(self, user_id: int, reason: TerminationReason) -> bool:
        """
        Tell the user their mailbox session ended.

        Called at most once per poller lifetime.

        Returns:
            True if delivered
        """
