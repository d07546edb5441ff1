"""Inbox poller: one recurring task per mailbox session.

A poller lists its mailbox every ``poll_interval`` seconds, diffs the
listing against the ids it has already surfaced and emits one
:class:`NewMessageEvent` per unseen message onto the registry's channel.

Lifecycle::

    STOPPED -> FIRST_CYCLE -> STEADY -> STOPPED

The first cycle only records what is already in the mailbox, so a restart
never replays old mail. Cycles of one poller never overlap: the next sleep
starts only after the previous cycle finished.
"""

import asyncio
import itertools
from collections import deque
from typing import Awaitable, Callable, Deque, Iterable, Iterator, List, Optional, Set

from loguru import logger

from ...constants import Polling
from ...core.enums import PollerStatus, TerminationReason
from ...core.exceptions import AuthError, ProviderError
from ...utils.masking import mask_email, mask_otp
from .models import (
    MailboxSession,
    MessageSummary,
    NewMessageEvent,
    PollerEvent,
    SessionTerminatedEvent,
    TokenRefreshedEvent,
)
from .pattern_matcher import OTPPatternMatcher, html_to_text
from .provider import MailProvider
from .token_authority import TokenAuthority

Sleep = Callable[[float], Awaitable[None]]

_poller_ids = itertools.count(1)


class BoundedIdSet:
    """Set of message ids that evicts the oldest insertions beyond ``cap``."""

    def __init__(self, cap: int = Polling.SEEN_IDS_CAP):
        if cap < 1:
            raise ValueError("cap must be positive")
        self._cap = cap
        # deque keeps insertion order, set gives O(1) membership
        self._queue: Deque[str] = deque()
        self._set: Set[str] = set()

    @property
    def cap(self) -> int:
        return self._cap

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._set

    def __len__(self) -> int:
        return len(self._set)

    def __iter__(self) -> Iterator[str]:
        """Ids from oldest to newest."""
        return iter(list(self._queue))

    def add(self, message_id: str) -> bool:
        """Add an id. Returns False if it was already present."""
        if message_id in self._set:
            return False
        self._set.add(message_id)
        self._queue.append(message_id)
        while len(self._queue) > self._cap:
            self._set.discard(self._queue.popleft())
        return True

    def update(self, message_ids: Iterable[str]) -> None:
        for message_id in message_ids:
            self.add(message_id)


def make_preview(text: str, limit: int = Polling.PREVIEW_LENGTH) -> str:
    """Markup-free preview truncated to ``limit`` characters."""
    preview = html_to_text(text) or "No preview available"
    if len(preview) > limit:
        preview = preview[:limit] + "..."
    return preview


class InboxPoller:
    """Polls one mailbox session and emits events onto a channel."""

    def __init__(
        self,
        session: MailboxSession,
        provider: MailProvider,
        authority: TokenAuthority,
        channel: "asyncio.Queue",
        poll_interval: float = Polling.INTERVAL_SECONDS,
        seen_ids_cap: int = Polling.SEEN_IDS_CAP,
        max_consecutive_failures: int = Polling.MAX_CONSECUTIVE_FAILURES,
        matcher: Optional[OTPPatternMatcher] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Initialize inbox poller.

        Args:
            session: Mailbox session this poller owns while it runs
            provider: Mail provider client
            authority: Token authority used for refresh-on-401
            channel: Queue receiving ``(poller_id, event)`` tuples
            poll_interval: Seconds between cycles
            seen_ids_cap: Maximum remembered message ids
            max_consecutive_failures: Transient failures in a row before giving up (0 = never)
            matcher: OTP extractor
            sleep: Coroutine used between cycles (injected by tests)
        """
        self.poller_id = next(_poller_ids)
        self.session = session
        self._provider = provider
        self._authority = authority
        self._channel = channel
        self._poll_interval = poll_interval
        self._max_failures = max_consecutive_failures
        self._matcher = matcher or OTPPatternMatcher()
        self._sleep = sleep

        self.seen_message_ids = BoundedIdSet(seen_ids_cap)
        # seen in a steady cycle but not yet handed to the sink
        self._pending: Set[str] = set()
        self._status = PollerStatus.FIRST_CYCLE
        self._cancelled = False
        self._terminated = False
        self._consecutive_failures = 0
        self.cycles = 0

    @property
    def status(self) -> PollerStatus:
        return self._status

    @property
    def is_first_cycle(self) -> bool:
        return self._status is PollerStatus.FIRST_CYCLE

    @property
    def stopped(self) -> bool:
        return self._cancelled

    @property
    def settled_message_ids(self) -> List[str]:
        """Seen ids, oldest first, whose notification is no longer outstanding."""
        return [i for i in self.seen_message_ids if i not in self._pending]

    def mark_delivered(self, message_id: str) -> None:
        """Called by the dispatcher once the event for ``message_id`` reached the sink."""
        self._pending.discard(message_id)

    def prime(self, message_ids: Iterable[str]) -> None:
        """
        Seed the dedup set and skip the silent first cycle.

        Only ids whose notification was already delivered may be passed in;
        anything else would never be notified.
        """
        self.seen_message_ids.update(message_ids)
        if self._status is PollerStatus.FIRST_CYCLE:
            self._status = PollerStatus.STEADY

    def stop(self) -> None:
        """Stop the poller. Idempotent; later results are discarded."""
        if not self._cancelled:
            self._cancelled = True
            self._status = PollerStatus.STOPPED
            logger.debug(f"Poller {self.poller_id} stopped for user {self.session.user_id}")

    def _emit(self, event: PollerEvent) -> None:
        if self._cancelled:
            logger.debug(f"Poller {self.poller_id} cancelled, dropping {type(event).__name__}")
            return
        self._channel.put_nowait((self.poller_id, event))

    def _terminate(self, reason: TerminationReason) -> None:
        if self._terminated:
            return
        self._terminated = True
        logger.warning(
            f"Session for {mask_email(self.session.address)} terminated: {reason.value}"
        )
        self._emit(SessionTerminatedEvent(user_id=self.session.user_id, reason=reason))
        self.stop()

    def _on_token_refreshed(self, token: str) -> None:
        self._emit(
            TokenRefreshedEvent(
                user_id=self.session.user_id, address=self.session.address, token=token
            )
        )

    def _record_failure(self, reason: str) -> None:
        self._consecutive_failures += 1
        logger.warning(
            f"Poll failed for {mask_email(self.session.address)} "
            f"(consecutive: {self._consecutive_failures}): {reason}"
        )
        if self._max_failures and self._consecutive_failures >= self._max_failures:
            self._terminate(TerminationReason.PROVIDER_UNREACHABLE)

    async def _fetch_detail(self, summary: MessageSummary) -> MessageSummary:
        """Fetch full content; fall back to the summary on non-auth failures."""
        try:
            return await self._authority.call_with_refresh(
                self.session,
                lambda token: self._provider.fetch_message(token, summary.id),
                on_refresh=self._on_token_refreshed,
            )
        except AuthError:
            raise
        except ProviderError as e:
            logger.warning(f"Fetching message {summary.id} failed, using summary: {e.message}")
            return summary

    def _build_event(self, message: MessageSummary) -> NewMessageEvent:
        body = message.body
        otp = self._matcher.extract_otp(f"{message.subject}\n{body}")
        return NewMessageEvent(
            user_id=self.session.user_id,
            message_id=message.id,
            sender=message.sender,
            subject=message.subject,
            body_preview=make_preview(body),
            otp=otp,
        )

    async def run_cycle(self) -> int:
        """
        Run one poll cycle.

        Returns:
            Number of new-message events emitted
        """
        if self._cancelled:
            return 0
        self.cycles += 1

        try:
            summaries = await self._authority.call_with_refresh(
                self.session, self._provider.list_messages, on_refresh=self._on_token_refreshed
            )
        except AuthError as e:
            logger.warning(f"Listing rejected after refresh: {e.message}")
            self._terminate(TerminationReason.AUTH_EXPIRED)
            return 0
        except ProviderError as e:
            self._record_failure(e.message)
            return 0

        if self._cancelled:
            return 0
        self._consecutive_failures = 0

        if self._status is PollerStatus.FIRST_CYCLE:
            self.seen_message_ids.update(s.id for s in summaries)
            self._status = PollerStatus.STEADY
            logger.debug(
                f"Poller {self.poller_id} primed with {len(summaries)} existing message(s)"
            )
            return 0

        emitted = 0
        for summary in summaries:
            if self._cancelled:
                break
            if not self.seen_message_ids.add(summary.id):
                continue
            self._pending.add(summary.id)

            fatal = False
            try:
                message = await self._fetch_detail(summary)
            except AuthError:
                message = summary
                fatal = True

            event = self._build_event(message)
            logger.info(
                f"New message for {mask_email(self.session.address)}: {summary.id}"
                + (f" (OTP {mask_otp(event.otp)})" if event.otp else "")
            )
            self._emit(event)
            emitted += 1

            if fatal:
                self._terminate(TerminationReason.AUTH_EXPIRED)
                break

        return emitted

    async def run(self) -> None:
        """Poll until stopped, sleeping between cycles."""
        logger.info(
            f"Poller {self.poller_id} started for {mask_email(self.session.address)} "
            f"(interval: {self._poll_interval}s)"
        )
        try:
            while not self._cancelled:
                try:
                    await self.run_cycle()
                except Exception as e:
                    logger.opt(exception=e).error(
                        f"Poller {self.poller_id} cycle {self.cycles} crashed: {e}"
                    )
                    self._record_failure(f"{e.__class__.__name__}: {e}")
                if self._cancelled:
                    break
                await self._sleep(self._poll_interval)
        except asyncio.CancelledError:
            self.stop()
            raise
        finally:
            self._status = PollerStatus.STOPPED
