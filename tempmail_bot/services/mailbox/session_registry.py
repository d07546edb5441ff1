"""Session registry: the single owner of per-user pollers.

The registry maps each user to at most one running :class:`InboxPoller`.
Pollers never call the notification sink themselves; they put events on a
shared channel and the registry's dispatcher forwards an event only if the
poller that produced it is still the live one for that user. Replacing a
poller is therefore enough to silence any cycle of the old one that is
still in flight.

All methods must be called from the event loop thread.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from loguru import logger

from ...core.enums import PollerStatus
from ...utils.masking import mask_email
from ..notification.base import NotificationSink
from .models import (
    MailboxSession,
    NewMessageEvent,
    PollerEvent,
    SessionTerminatedEvent,
    TokenRefreshedEvent,
)
from .poller import InboxPoller

PollerFactory = Callable[[MailboxSession, "asyncio.Queue"], InboxPoller]
TokenRefreshedHook = Callable[[TokenRefreshedEvent], Awaitable[None]]


@dataclass
class _PollerHandle:
    poller: InboxPoller
    task: "asyncio.Task"


class SessionRegistry:
    """Per-user poller registry with an event dispatcher."""

    def __init__(
        self,
        sink: NotificationSink,
        poller_factory: PollerFactory,
        on_token_refreshed: Optional[TokenRefreshedHook] = None,
    ):
        """
        Initialize session registry.

        Args:
            sink: Receives new-message and termination notifications
            poller_factory: Builds a poller for a session and the event channel
            on_token_refreshed: Optional hook to persist refreshed tokens
        """
        self._sink = sink
        self._poller_factory = poller_factory
        self._on_token_refreshed = on_token_refreshed
        self._pollers: Dict[int, _PollerHandle] = {}
        self._channel: "asyncio.Queue[Tuple[int, PollerEvent]]" = asyncio.Queue()

    @property
    def channel(self) -> "asyncio.Queue":
        return self._channel

    def start(
        self, user_id: int, session: MailboxSession, carry_over_seen: bool = False
    ) -> InboxPoller:
        """
        Start polling ``session`` for ``user_id``, replacing any running poller.

        The old poller is stopped before the new task is created; both happen
        without yielding to the event loop, so two pollers for one user never
        run side by side.

        Args:
            user_id: Owning user
            session: Session to poll
            carry_over_seen: Hand the replaced poller's delivered ids to the new
                one, if it already finished its first cycle (same mailbox
                restarts). Ids whose notification is still queued or in flight
                are left out, so the new poller notifies them again.
        """
        if session.user_id != user_id:
            raise ValueError("Session belongs to a different user")

        previous = self._pollers.get(user_id)
        inherited = None
        if (
            carry_over_seen
            and previous is not None
            and previous.poller.session.address == session.address
            and previous.poller.status is PollerStatus.STEADY
        ):
            inherited = previous.poller.settled_message_ids

        self._cancel(user_id, reason="replaced")

        poller = self._poller_factory(session, self._channel)
        if inherited is not None:
            poller.prime(inherited)
        task = asyncio.get_running_loop().create_task(
            poller.run(), name=f"inbox-poller-{user_id}"
        )
        task.add_done_callback(self._log_task_result)
        self._pollers[user_id] = _PollerHandle(poller=poller, task=task)

        logger.info(f"Polling started for user {user_id} ({mask_email(session.address)})")
        return poller

    def stop(self, user_id: int) -> bool:
        """
        Stop the poller for a user. No-op if none is active.

        Returns:
            True if a poller was stopped
        """
        return self._cancel(user_id, reason="stopped")

    def _cancel(self, user_id: int, reason: str) -> bool:
        handle = self._pollers.pop(user_id, None)
        if handle is None:
            return False
        handle.poller.stop()
        handle.task.cancel()
        logger.info(f"Polling {reason} for user {user_id}")
        return True

    def stop_all(self) -> List["asyncio.Task"]:
        """Stop every poller. Returns the cancelled tasks so callers can await them."""
        tasks = []
        logger.info(f"Stopping all {len(self._pollers)} inbox pollers")
        for user_id in list(self._pollers):
            handle = self._pollers[user_id]
            tasks.append(handle.task)
            self._cancel(user_id, reason="stopped")
        return tasks

    async def shutdown(self) -> None:
        """Stop every poller and wait for their tasks to finish."""
        tasks = self.stop_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def is_active(self, user_id: int) -> bool:
        handle = self._pollers.get(user_id)
        return handle is not None and self._is_live(handle)

    def count(self) -> int:
        return sum(1 for handle in self._pollers.values() if self._is_live(handle))

    @staticmethod
    def _is_live(handle: _PollerHandle) -> bool:
        return not handle.poller.stopped and not handle.task.done()

    def get_session(self, user_id: int) -> Optional[MailboxSession]:
        """Session currently being polled for a user."""
        handle = self._pollers.get(user_id)
        return handle.poller.session if handle else None

    def get_poller(self, user_id: int) -> Optional[InboxPoller]:
        handle = self._pollers.get(user_id)
        return handle.poller if handle else None

    @staticmethod
    def _log_task_result(task: "asyncio.Task") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.opt(exception=error).error(f"Poller task {task.get_name()} crashed: {error}")

    def _is_current(self, user_id: int, poller_id: int) -> bool:
        handle = self._pollers.get(user_id)
        return handle is not None and handle.poller.poller_id == poller_id

    async def _deliver(self, poller_id: int, event: PollerEvent) -> bool:
        """Forward one event if its poller is still current. Returns True if delivered."""
        if not self._is_current(event.user_id, poller_id):
            logger.debug(
                f"Discarding {type(event).__name__} from stale poller {poller_id} "
                f"(user {event.user_id})"
            )
            return False

        if isinstance(event, NewMessageEvent):
            self._pollers[event.user_id].poller.mark_delivered(event.message_id)
            await self._sink.on_new_message(event.user_id, event)
        elif isinstance(event, SessionTerminatedEvent):
            handle = self._pollers.pop(event.user_id)
            handle.task.cancel()
            await self._sink.on_session_terminated(event.user_id, event.reason)
        elif isinstance(event, TokenRefreshedEvent):
            if self._on_token_refreshed is not None:
                await self._on_token_refreshed(event)
        return True

    async def _deliver_safely(self, poller_id: int, event: PollerEvent) -> bool:
        try:
            return await self._deliver(poller_id, event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Delivering {type(event).__name__} to user {event.user_id} failed: {e}")
            return False
        finally:
            self._channel.task_done()

    async def dispatch_pending(self) -> int:
        """
        Deliver every event currently queued.

        Returns:
            Number of events delivered
        """
        delivered = 0
        while not self._channel.empty():
            poller_id, event = self._channel.get_nowait()
            if await self._deliver_safely(poller_id, event):
                delivered += 1
        return delivered

    async def run_dispatcher(self) -> None:
        """Deliver events forever, in channel order."""
        logger.info("Event dispatcher started")
        while True:
            poller_id, event = await self._channel.get()
            await self._deliver_safely(poller_id, event)
