"""Tests for the inbox poller and its bounded dedup set."""

import asyncio

import pytest
from conftest import no_sleep, summary

from tempmail_bot.core.enums import PollerStatus, TerminationReason
from tempmail_bot.core.exceptions import AuthError, ProviderError, TransientError
from tempmail_bot.services.mailbox.models import (
    NewMessageEvent,
    SessionTerminatedEvent,
    TokenRefreshedEvent,
)
from tempmail_bot.services.mailbox.poller import BoundedIdSet, InboxPoller, make_preview
from tempmail_bot.services.mailbox.token_authority import TokenAuthority


def drain(channel: asyncio.Queue) -> list:
    """Return every queued event, dropping the poller ids."""
    events = []
    while not channel.empty():
        _poller_id, event = channel.get_nowait()
        events.append(event)
    return events


def make_poller(session, provider, channel, **kwargs) -> InboxPoller:
    kwargs.setdefault("sleep", no_sleep)
    return InboxPoller(session, provider, TokenAuthority(provider), channel, **kwargs)


class TestBoundedIdSet:
    """Tests for BoundedIdSet."""

    def test_add_reports_new_ids(self):
        ids = BoundedIdSet(cap=3)
        assert ids.add("a") is True
        assert ids.add("a") is False
        assert "a" in ids
        assert len(ids) == 1

    def test_never_exceeds_cap(self):
        ids = BoundedIdSet(cap=100)
        ids.update(str(i) for i in range(250))
        assert len(ids) == 100

    def test_evicts_oldest_first(self):
        ids = BoundedIdSet(cap=3)
        ids.update(["a", "b", "c", "d"])
        assert "a" not in ids
        assert list(ids) == ["b", "c", "d"]

    def test_re_adding_does_not_refresh_position(self):
        ids = BoundedIdSet(cap=2)
        ids.update(["a", "b"])
        ids.add("a")
        ids.add("c")
        assert "a" not in ids
        assert list(ids) == ["b", "c"]

    def test_invalid_cap(self):
        with pytest.raises(ValueError):
            BoundedIdSet(cap=0)


class TestMakePreview:
    """Tests for notification previews."""

    def test_truncates_to_limit(self):
        preview = make_preview("x" * 500, limit=200)
        assert preview == "x" * 200 + "..."

    def test_strips_markup(self):
        assert make_preview("<p>Hello <b>there</b></p>") == "Hello there"

    def test_empty_body(self):
        assert make_preview("") == "No preview available"


class TestInboxPollerCycles:
    """Tests for cycle diffing."""

    @pytest.mark.asyncio
    async def test_first_cycle_never_emits(self, provider, mailbox_session, channel):
        provider.inbox = [summary("A"), summary("B")]
        poller = make_poller(mailbox_session, provider, channel)

        assert poller.is_first_cycle
        emitted = await poller.run_cycle()

        assert emitted == 0
        assert channel.empty()
        assert poller.status is PollerStatus.STEADY
        assert "A" in poller.seen_message_ids and "B" in poller.seen_message_ids

    @pytest.mark.asyncio
    async def test_only_new_messages_emitted(self, provider, mailbox_session, channel):
        """[A,B] -> [A,B,C] emits only C -> [A,B,C] emits nothing."""
        provider.inbox = [summary("A"), summary("B")]
        poller = make_poller(mailbox_session, provider, channel)
        await poller.run_cycle()

        provider.inbox = [summary("A"), summary("B"), summary("C", subject="Code")]
        provider.bodies["C"] = "Your verification code is 482913"
        assert await poller.run_cycle() == 1
        events = drain(channel)
        assert len(events) == 1
        assert isinstance(events[0], NewMessageEvent)
        assert events[0].message_id == "C"
        assert events[0].otp == "482913"
        assert events[0].user_id == mailbox_session.user_id

        assert await poller.run_cycle() == 0
        assert channel.empty()

    @pytest.mark.asyncio
    async def test_emission_follows_listing_order(self, provider, mailbox_session, channel):
        poller = make_poller(mailbox_session, provider, channel)
        await poller.run_cycle()

        provider.inbox = [summary("Z"), summary("Y"), summary("X")]
        await poller.run_cycle()

        assert [e.message_id for e in drain(channel)] == ["Z", "Y", "X"]

    @pytest.mark.asyncio
    async def test_preview_uses_full_body(self, provider, mailbox_session, channel):
        poller = make_poller(mailbox_session, provider, channel)
        await poller.run_cycle()

        provider.inbox = [summary("A", intro="short intro")]
        provider.bodies["A"] = "<p>Full <i>body</i> text</p>"
        await poller.run_cycle()

        (event,) = drain(channel)
        assert event.body_preview == "Full body text"
        assert event.otp is None

    @pytest.mark.asyncio
    async def test_detail_failure_falls_back_to_summary(self, provider, mailbox_session, channel):
        poller = make_poller(mailbox_session, provider, channel)
        await poller.run_cycle()

        provider.inbox = [summary("A", subject="Welcome", intro="Your code is 730182")]
        provider.fetch_error = ProviderError("Not Found", status=404)
        assert await poller.run_cycle() == 1

        (event,) = drain(channel)
        assert event.subject == "Welcome"
        assert event.body_preview == "Your code is 730182"
        assert event.otp == "730182"

    @pytest.mark.asyncio
    async def test_transient_failure_skips_cycle(self, provider, mailbox_session, channel):
        provider.inbox = [summary("A")]
        poller = make_poller(mailbox_session, provider, channel)
        await poller.run_cycle()

        provider.list_error = TransientError("GET /messages returned 503", status=503)
        provider.inbox = [summary("A"), summary("B")]
        assert await poller.run_cycle() == 0
        assert channel.empty()
        assert provider.token_calls == 0

        provider.list_error = None
        assert await poller.run_cycle() == 1
        assert [e.message_id for e in drain(channel)] == ["B"]

    @pytest.mark.asyncio
    async def test_transient_failure_during_first_cycle_keeps_suppression(
        self, provider, mailbox_session, channel
    ):
        provider.inbox = [summary("A")]
        provider.list_error = TransientError()
        poller = make_poller(mailbox_session, provider, channel)

        await poller.run_cycle()
        assert poller.is_first_cycle

        provider.list_error = None
        await poller.run_cycle()
        assert channel.empty()

    @pytest.mark.asyncio
    async def test_consecutive_failure_ceiling(self, provider, mailbox_session, channel):
        provider.list_error = TransientError()
        poller = make_poller(mailbox_session, provider, channel, max_consecutive_failures=3)

        for _ in range(3):
            await poller.run_cycle()

        events = drain(channel)
        assert events == [
            SessionTerminatedEvent(
                user_id=mailbox_session.user_id, reason=TerminationReason.PROVIDER_UNREACHABLE
            )
        ]
        assert poller.stopped

    @pytest.mark.asyncio
    async def test_seen_ids_respect_cap(self, provider, mailbox_session, channel):
        provider.inbox = [summary(str(i)) for i in range(10)]
        poller = make_poller(mailbox_session, provider, channel, seen_ids_cap=4)
        await poller.run_cycle()
        assert len(poller.seen_message_ids) == 4


class TestInboxPollerAuth:
    """Tests for refresh-on-401 inside a cycle."""

    @pytest.mark.asyncio
    async def test_refresh_success_retries_in_same_cycle(
        self, provider, mailbox_session, channel
    ):
        provider.inbox = [summary("A")]
        poller = make_poller(mailbox_session, provider, channel)
        await poller.run_cycle()

        provider.expire_token()
        provider.inbox = [summary("A"), summary("B")]
        assert await poller.run_cycle() == 1

        assert provider.token_calls == 1
        assert mailbox_session.token == "token-1"
        events = drain(channel)
        assert isinstance(events[0], TokenRefreshedEvent)
        assert events[0].token == "token-1"
        assert isinstance(events[1], NewMessageEvent)
        assert events[1].message_id == "B"

    @pytest.mark.asyncio
    async def test_refresh_failure_terminates_once(self, provider, mailbox_session, channel):
        provider.inbox = [summary("A")]
        poller = make_poller(mailbox_session, provider, channel)
        await poller.run_cycle()

        provider.expire_token()
        provider.reject_credentials = True
        await poller.run_cycle()

        assert provider.token_calls == 1
        assert poller.stopped
        assert drain(channel) == [
            SessionTerminatedEvent(
                user_id=mailbox_session.user_id, reason=TerminationReason.AUTH_EXPIRED
            )
        ]

        list_calls = provider.list_calls
        assert await poller.run_cycle() == 0
        assert provider.list_calls == list_calls
        assert channel.empty()

    @pytest.mark.asyncio
    async def test_run_loop_stops_after_auth_expiry(self, provider, mailbox_session, channel):
        provider.expire_token()
        provider.reject_credentials = True
        poller = make_poller(mailbox_session, provider, channel)

        await asyncio.wait_for(poller.run(), timeout=1)

        assert poller.cycles == 1
        assert poller.status is PollerStatus.STOPPED
        events = drain(channel)
        assert len(events) == 1
        assert events[0].reason is TerminationReason.AUTH_EXPIRED

    @pytest.mark.asyncio
    async def test_fetch_auth_failure_emits_summary_then_terminates(
        self, provider, mailbox_session, channel
    ):
        poller = make_poller(mailbox_session, provider, channel)
        await poller.run_cycle()

        provider.inbox = [summary("A", intro="preview"), summary("B")]
        provider.fetch_error = AuthError("Invalid JWT Token", status=401)
        provider.reject_credentials = True
        await poller.run_cycle()

        events = drain(channel)
        assert [type(e) for e in events] == [NewMessageEvent, SessionTerminatedEvent]
        assert events[0].message_id == "A"
        assert events[0].body_preview == "preview"
        assert events[1].reason is TerminationReason.AUTH_EXPIRED


class TestInboxPollerLifecycle:
    """Tests for stop and cancellation."""

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, provider, mailbox_session, channel):
        poller = make_poller(mailbox_session, provider, channel)
        poller.stop()
        poller.stop()
        assert poller.stopped
        assert poller.status is PollerStatus.STOPPED
        assert await poller.run_cycle() == 0

    @pytest.mark.asyncio
    async def test_stopped_mid_cycle_discards_results(self, provider, mailbox_session, channel):
        poller = make_poller(mailbox_session, provider, channel)
        await poller.run_cycle()
        provider.inbox = [summary("A")]

        original = provider.list_messages

        async def list_then_stop(token):
            result = await original(token)
            poller.stop()
            return result

        provider.list_messages = list_then_stop
        assert await poller.run_cycle() == 0
        assert channel.empty()

    @pytest.mark.asyncio
    async def test_run_sleeps_between_cycles(self, provider, mailbox_session, channel):
        sleeps = []
        poller = None

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 3:
                poller.stop()

        poller = make_poller(
            mailbox_session, provider, channel, poll_interval=5.0, sleep=fake_sleep
        )
        await poller.run()

        assert sleeps == [5.0, 5.0, 5.0]
        assert poller.cycles == 3

    @pytest.mark.asyncio
    async def test_prime_skips_first_cycle(self, provider, mailbox_session, channel):
        provider.inbox = [summary("A"), summary("B")]
        poller = make_poller(mailbox_session, provider, channel)
        poller.prime(["A"])

        assert poller.status is PollerStatus.STEADY
        assert await poller.run_cycle() == 1
        assert [e.message_id for e in drain(channel)] == ["B"]

    def test_poller_ids_are_unique(self, provider, mailbox_session, channel):
        first = make_poller(mailbox_session, provider, channel)
        second = make_poller(mailbox_session, provider, channel)
        assert first.poller_id != second.poller_id

    @pytest.mark.asyncio
    async def test_unexpected_cycle_error_keeps_poller_running(
        self, provider, mailbox_session, channel
    ):
        provider.list_error = ValueError("Expecting value: line 1 column 1 (char 0)")
        sleeps = []
        poller = None

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 1:
                provider.list_error = None
                provider.inbox = [summary("A")]
            if len(sleeps) == 3:
                poller.stop()

        poller = make_poller(mailbox_session, provider, channel, sleep=fake_sleep)
        await poller.run()

        assert poller.cycles == 3
        assert channel.empty()
        assert "A" in poller.seen_message_ids

    @pytest.mark.asyncio
    async def test_unexpected_errors_count_towards_ceiling(
        self, provider, mailbox_session, channel
    ):
        provider.list_error = AttributeError("'str' object has no attribute 'get'")
        poller = make_poller(mailbox_session, provider, channel, max_consecutive_failures=2)

        await poller.run()

        assert drain(channel) == [
            SessionTerminatedEvent(
                user_id=mailbox_session.user_id, reason=TerminationReason.PROVIDER_UNREACHABLE
            )
        ]
        assert poller.stopped

    @pytest.mark.asyncio
    async def test_settled_ids_exclude_undelivered(self, provider, mailbox_session, channel):
        provider.inbox = [summary("A")]
        poller = make_poller(mailbox_session, provider, channel)
        await poller.run_cycle()
        provider.inbox = [summary("C"), summary("A")]
        await poller.run_cycle()

        assert "C" in poller.seen_message_ids
        assert poller.settled_message_ids == ["A"]
        poller.mark_delivered("C")
        assert poller.settled_message_ids == ["A", "C"]
