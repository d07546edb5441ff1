"""Mailbox service: the operations a chat front-end needs.

Ties the provisioner, token authority, session registry and repository
together. The facade never mutates the session object a poller owns; when it
has to re-authenticate it persists the new token and restarts the poller
through the registry.
"""

import asyncio
import dataclasses
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional, Tuple, TypeVar

from loguru import logger

from ...core.config.settings import TempMailSettings
from ...core.enums import InboxStatus, RecoveryMode, RecoveryOutcome
from ...core.exceptions import AuthError, SessionNotFoundError, TransientError
from ...core.retry import get_provision_retry
from ...utils.masking import mask_email
from ...utils.validators import sanitize_email
from .models import InboxView, MailboxSession, MessageDetail, utcnow
from .pattern_matcher import OTPPatternMatcher
from .poller import InboxPoller
from .provider import MailProvider
from .provisioner import CredentialProvisioner
from .session_registry import PollerFactory, SessionRegistry
from .token_authority import TokenAuthority

if TYPE_CHECKING:
    from ...repositories.session_repository import SessionRepository

T = TypeVar("T")


def build_poller_factory(
    settings: TempMailSettings,
    provider: MailProvider,
    authority: TokenAuthority,
    matcher: Optional[OTPPatternMatcher] = None,
) -> PollerFactory:
    """Poller factory configured from settings, for :class:`SessionRegistry`."""
    matcher = matcher or OTPPatternMatcher()

    def factory(session: MailboxSession, channel: "asyncio.Queue") -> InboxPoller:
        return InboxPoller(
            session,
            provider,
            authority,
            channel,
            poll_interval=settings.poll_interval_seconds,
            seen_ids_cap=settings.seen_ids_cap,
            max_consecutive_failures=settings.max_consecutive_failures,
            matcher=matcher,
        )

    return factory


class MailboxService:
    """Per-user mailbox operations on top of the polling engine."""

    def __init__(
        self,
        settings: TempMailSettings,
        provider: MailProvider,
        registry: SessionRegistry,
        repository: "SessionRepository",
        authority: Optional[TokenAuthority] = None,
        provisioner: Optional[CredentialProvisioner] = None,
        matcher: Optional[OTPPatternMatcher] = None,
    ):
        """
        Initialize mailbox service.

        Args:
            settings: Application settings
            provider: Mail provider client
            registry: Session registry owning the pollers
            repository: Session persistence
            authority: Token authority (built from ``provider`` if omitted)
            provisioner: Credential provisioner (built from ``provider`` if omitted)
            matcher: OTP extractor used by :meth:`read_message`
        """
        self._settings = settings
        self._provider = provider
        self._registry = registry
        self._repository = repository
        self._authority = authority or TokenAuthority(provider)
        self._provisioner = provisioner or CredentialProvisioner(provider)
        self._matcher = matcher or OTPPatternMatcher()

    async def generate_new(self, user_id: int) -> MailboxSession:
        """
        Provision a new mailbox, make it current and start polling it.

        Raises:
            ProvisionError: if the provider could not provision a mailbox
        """
        provision = get_provision_retry(attempts=self._settings.provision_attempts)(
            self._provisioner.provision
        )
        session = await provision(user_id)
        await self._repository.save_current(session)
        self._registry.start(user_id, session)
        return session

    async def recover(self, user_id: int, address: str) -> RecoveryOutcome:
        """
        Recover by a known address.

        In ``reauthenticate`` mode a mailbox this user owned before is
        re-authenticated, made current and polled again. Any other address,
        and every address in ``link`` mode, is stored as the recovery address
        of the current mailbox.
        """
        try:
            address = sanitize_email(address)
        except ValueError:
            return RecoveryOutcome.INVALID_ADDRESS

        if self._settings.recovery_mode is RecoveryMode.REAUTHENTICATE:
            stored = await self._repository.find(user_id, address)
            if stored is not None:
                return await self._resume(stored)

        if await self._repository.set_recovery_address(user_id, address):
            logger.info(f"Recovery address {mask_email(address)} linked for user {user_id}")
            return RecoveryOutcome.LINKED
        logger.info(f"User {user_id} has no current mailbox to link a recovery address to")
        return RecoveryOutcome.FAILED

    async def _resume(self, stored: MailboxSession) -> RecoveryOutcome:
        try:
            token = await self._authority.refresh(stored.address, stored.secret)
        except (AuthError, TransientError) as e:
            logger.warning(f"Recovery of {mask_email(stored.address)} failed: {e.message}")
            return RecoveryOutcome.FAILED

        session = dataclasses.replace(stored, token=token, last_access=utcnow())
        await self._repository.save_current(session)
        self._registry.start(session.user_id, session, carry_over_seen=True)
        logger.info(f"Mailbox {mask_email(session.address)} resumed for user {session.user_id}")
        return RecoveryOutcome.RESUMED

    async def _current_session(self, user_id: int) -> Optional[MailboxSession]:
        session = self._registry.get_session(user_id)
        if session is None:
            session = await self._repository.get_current(user_id)
        # private copy, the poller owns the original
        return dataclasses.replace(session) if session is not None else None

    async def _with_refresh(
        self, session: MailboxSession, operation: Callable[[str], Awaitable[T]]
    ) -> T:
        """
        Run ``operation(token)`` on a facade-owned session copy.

        On a refresh the new token is persisted and the poller restarted with
        it, keeping the seen ids so nothing is notified twice.
        """
        refreshed: List[str] = []
        result = await self._authority.call_with_refresh(
            session, operation, on_refresh=refreshed.append
        )
        if refreshed:
            await self._repository.update_token(session.user_id, session.address, session.token)
            self._registry.start(session.user_id, session, carry_over_seen=True)
        return result

    async def get_inbox(self, user_id: int) -> InboxView:
        """Latest messages of the user's current mailbox, newest first."""
        session = await self._current_session(user_id)
        if session is None:
            return InboxView(status=InboxStatus.NO_MAILBOX)

        try:
            messages = await self._with_refresh(session, self._provider.list_messages)
        except AuthError as e:
            logger.info(f"Inbox of {mask_email(session.address)} expired: {e.message}")
            self._registry.stop(user_id)
            return InboxView(status=InboxStatus.EXPIRED, address=session.address)
        except TransientError as e:
            logger.warning(f"Inbox of {mask_email(session.address)} unreachable: {e.message}")
            return InboxView(status=InboxStatus.PROVIDER_UNREACHABLE, address=session.address)

        return InboxView(status=InboxStatus.OK, address=session.address, messages=messages)

    async def read_message(
        self, user_id: int, message_id: str
    ) -> Tuple[MessageDetail, Optional[str]]:
        """
        Full content of one message and the OTP found in it.

        Raises:
            SessionNotFoundError: if the user has no mailbox
            AuthError: if the mailbox could not be re-authenticated
            ProviderError: on any other provider failure
        """
        session = await self._current_session(user_id)
        if session is None:
            raise SessionNotFoundError(user_id)

        detail = await self._with_refresh(
            session, lambda token: self._provider.fetch_message(token, message_id)
        )
        return detail, self._matcher.extract_otp(f"{detail.subject}\n{detail.body}")

    async def delete_message(self, user_id: int, message_id: str) -> None:
        """
        Delete one message from the user's current mailbox.

        Raises:
            SessionNotFoundError: if the user has no mailbox
        """
        session = await self._current_session(user_id)
        if session is None:
            raise SessionNotFoundError(user_id)

        await self._with_refresh(
            session, lambda token: self._provider.delete_message(token, message_id)
        )
        logger.info(f"Message {message_id} deleted from {mask_email(session.address)}")

    async def current_address(self, user_id: int) -> Optional[str]:
        session = await self._current_session(user_id)
        return session.address if session else None

    async def restore_all(self) -> int:
        """
        Start a poller for every stored current session.

        Mail already in a restored mailbox is not notified again.

        Returns:
            Number of sessions restored
        """
        sessions = await self._repository.get_all_current()
        for session in sessions:
            self._registry.start(session.user_id, session)
        logger.info(f"Restored {len(sessions)} mailbox session(s)")
        return len(sessions)

    async def shutdown(self) -> None:
        """Stop all pollers and wait for them to exit."""
        await self._registry.shutdown()
