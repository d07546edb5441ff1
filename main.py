#!/usr/bin/env python3
"""
TempMail Bot - disposable mailboxes with inbox notifications over Telegram.

Main entry point: restores stored mailbox sessions, polls their inboxes and
forwards new mail to each user's chat until SIGINT/SIGTERM.
"""

import argparse
import asyncio
import os
import signal
import sys
from typing import Optional

from loguru import logger
from pydantic import ValidationError

from tempmail_bot.core.config import TempMailSettings, get_settings
from tempmail_bot.core.logger import setup_structured_logging
from tempmail_bot.models.database import Database
from tempmail_bot.repositories.session_repository import SessionRepository
from tempmail_bot.services.mailbox import (
    MailboxService,
    MailTmClient,
    SessionRegistry,
    TokenAuthority,
    TokenRefreshedEvent,
    build_poller_factory,
)
from tempmail_bot.services.notification import TelegramConfig, TelegramNotificationSink
from tempmail_bot.utils.encryption import SecretCipher

# Graceful shutdown timeout in seconds (configurable via env)
try:
    SHUTDOWN_TIMEOUT = max(5, min(int(os.getenv("SHUTDOWN_TIMEOUT", "30")), 300))
except (ValueError, TypeError):
    SHUTDOWN_TIMEOUT = 30


def setup_signal_handlers(shutdown_event: asyncio.Event) -> None:
    """Set ``shutdown_event`` on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()

    def handle_signal(signame: str) -> None:
        if shutdown_event.is_set():
            logger.warning(f"Received {signame} again, shutdown already in progress")
            return
        logger.info(f"Received {signame}, initiating graceful shutdown...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, handle_signal, sig.name)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            signal.signal(sig, lambda signum, frame: handle_signal(signal.Signals(signum).name))


def build_sink(settings: TempMailSettings) -> TelegramNotificationSink:
    token = settings.telegram_bot_token.get_secret_value() if settings.telegram_bot_token else None
    if not token:
        logger.warning("TELEGRAM_BOT_TOKEN not set, notifications are disabled")
    return TelegramNotificationSink(TelegramConfig(enabled=bool(token), bot_token=token))


async def _safe_shutdown_cleanup(
    service: Optional[MailboxService],
    dispatcher: Optional["asyncio.Task"],
    provider: Optional[MailTmClient],
    db: Optional[Database],
) -> None:
    """Stop pollers, the dispatcher and close connections, each with a timeout."""
    if service is not None:
        try:
            await asyncio.wait_for(service.shutdown(), timeout=SHUTDOWN_TIMEOUT)
            logger.info("All pollers stopped")
        except asyncio.TimeoutError:
            logger.error(f"Stopping pollers timed out after {SHUTDOWN_TIMEOUT}s")

    if dispatcher is not None:
        dispatcher.cancel()
        try:
            await dispatcher
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Event dispatcher failed: {e}")

    if provider is not None:
        await provider.close()

    if db is not None:
        try:
            await asyncio.wait_for(db.close(), timeout=10)
        except asyncio.TimeoutError:
            logger.error("Database close timed out after 10s")


async def run(settings: TempMailSettings) -> None:
    """Wire the engine together and run until a shutdown signal arrives."""
    shutdown_event = asyncio.Event()
    setup_signal_handlers(shutdown_event)

    db: Optional[Database] = None
    provider: Optional[MailTmClient] = None
    service: Optional[MailboxService] = None
    dispatcher: Optional["asyncio.Task"] = None
    try:
        db = Database(settings.database_url, pool_size=settings.db_pool_size)
        await db.connect()

        cipher = SecretCipher(settings.encryption_key.get_secret_value())
        repository = SessionRepository(db, cipher)

        provider = MailTmClient(settings.mail_api_base, timeout=settings.request_timeout_seconds)
        authority = TokenAuthority(provider)

        async def persist_token(event: TokenRefreshedEvent) -> None:
            await repository.update_token(event.user_id, event.address, event.token)

        registry = SessionRegistry(
            sink=build_sink(settings),
            poller_factory=build_poller_factory(settings, provider, authority),
            on_token_refreshed=persist_token,
        )
        service = MailboxService(settings, provider, registry, repository, authority=authority)

        dispatcher = asyncio.create_task(registry.run_dispatcher(), name="event-dispatcher")
        await service.restore_all()

        logger.info("TempMail Bot running, press Ctrl+C to stop")
        await shutdown_event.wait()
    finally:
        await _safe_shutdown_cleanup(service, dispatcher, provider, db)
        logger.info("Shutdown complete")


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="TempMail Bot - disposable mailbox notifier")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides LOG_LEVEL)",
    )
    args = parser.parse_args()

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_structured_logging(args.log_level or settings.log_level, json_format=settings.log_json)

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        logger.info("Stopped by user")
    except Exception as e:
        logger.opt(exception=e).error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
