"""Message templates for the notification sink."""

from typing import Callable, Optional

from ...core.enums import TerminationReason

Escape = Callable[[str], str]


def _identity(text: str) -> str:
    return text


class MessageTemplates:
    """Static message templates for each engine event."""

    @staticmethod
    def new_message(
        sender: str,
        subject: str,
        preview: str,
        otp: Optional[str] = None,
        escape: Escape = _identity,
    ) -> str:
        """Template for a newly received mail."""
        text = (
            "📩 New Mail Received In Your Email ID 🪧\n"
            f"📇 From : {escape(sender)}\n"
            f"🗒️ Subject : {escape(subject or 'No Subject')}\n"
            f"💬 Text : {escape(preview)}\n"
        )
        if otp:
            text += f"\n👉 OTP : `{otp}`"
        return text

    @staticmethod
    def session_terminated(reason: TerminationReason) -> str:
        """Template for a torn-down mailbox session."""
        if reason is TerminationReason.AUTH_EXPIRED:
            return (
                "⌛ Your temporary mailbox has expired.\n\n"
                "Generate a new email to keep receiving messages."
            )
        return (
            "📡 The mail service is unreachable, so your inbox is no longer being watched.\n\n"
            "Open your inbox or recover your email to resume."
        )

    @staticmethod
    def mailbox_created(address: str, escape: Escape = _identity) -> str:
        """Template for a freshly provisioned mailbox."""
        return f"♻️ New Email Generated Successfully ✅\n\n📬 Email ID : {escape(address)} 👈"

    @staticmethod
    def mailbox_recovered(address: str, escape: Escape = _identity) -> str:
        """Template for a resumed mailbox."""
        return f"♻️ Recovery Email Successfully ✅\n\n📬 Recovery Email : {escape(address)} 👈"

    @staticmethod
    def recovery_linked(address: str, escape: Escape = _identity) -> str:
        """Template for a linked recovery address."""
        return f"✅ Recovery Email Linked Successfully 🎉\n\n📬 Your Recovery Email : {escape(address)}"
