"""Constants for TempMail Bot.

    from tempmail_bot.constants import OTP, Polling, Provisioning
"""

from .mailbox import OTP, Polling, Provisioning

__all__ = ["OTP", "Polling", "Provisioning"]
