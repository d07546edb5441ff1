"""TempMail Bot - disposable mailboxes with inbox notifications over Telegram."""

__version__ = "1.0.0"
