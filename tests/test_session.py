"""Tests for a single account session against an in-memory transport."""

from __future__ import annotations

import asyncio

import pytest

from fakes import FakeClassifier, FakeIndex, FakeTransport, RecordingNotifier, dated, make_account, make_rfc822, wait_until
from onebox.application.ports.mail_transport import NewMail
from onebox.application.sync import AccountSession, SessionContext, SessionOptions, SessionRegistry, SessionState
from onebox.application.use_cases.ingest_email import IngestEmailUseCase
from onebox.domain.errors import TransportError
from onebox.domain.models import Category


def _mailbox(n: int) -> dict[int, bytes]:
    return {
        uid: make_rfc822(message_id=f"<m{uid}@example.com>", subject=f"Message {uid}", date=dated(uid))
        for uid in range(1, n + 1)
    }


def _session(transport, index=None, classifier=None, pipeline=None, **options):
    registry = SessionRegistry()
    account = make_account()
    registry.register(account)
    handle = registry.begin_generation(account.id)
    pipeline = pipeline or IngestEmailUseCase(index or FakeIndex(), classifier or FakeClassifier(), RecordingNotifier())
    opts = SessionOptions(**{"idle_poll": 0.02, "drain_timeout": 1.0, **options})
    return AccountSession(SessionContext(account, handle, opts), transport, pipeline), registry


@pytest.mark.asyncio
async def test_initial_sync_processes_only_most_recent_messages() -> None:
    index = FakeIndex()
    transport = FakeTransport(_mailbox(12))
    session, registry = _session(transport, index=index, classifier=FakeClassifier(default=Category.SPAM))

    task = asyncio.create_task(session.run())
    await wait_until(lambda: session.state == SessionState.LIVE)
    session.stop()
    outcome = await task

    stored = {r.message_id for r in index.records.values()}
    assert stored == {f"<m{uid}@example.com>" for uid in range(3, 13)}
    assert all(r.category == Category.SPAM for r in index.records.values())
    assert transport.fetches == [list(range(3, 13))]
    assert outcome.state == SessionState.CLOSED
    assert outcome.stopped is True
    assert transport.closed is True
    assert registry.status("acct-1").connected is False


@pytest.mark.asyncio
async def test_empty_mailbox_goes_live_without_fetching() -> None:
    transport = FakeTransport()
    session, registry = _session(transport)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: session.state == SessionState.LIVE)

    assert registry.status("acct-1").connected is True
    assert transport.fetches == []
    session.stop()
    await task


@pytest.mark.asyncio
async def test_new_mail_is_fetched_and_ingested() -> None:
    index = FakeIndex()
    transport = FakeTransport(_mailbox(2))
    session, _ = _session(transport, index=index)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: session.state == SessionState.LIVE)
    transport.deliver(3, make_rfc822(message_id="<m3@example.com>", subject="Fresh"))
    await wait_until(lambda: index.by_message_id("<m3@example.com>"))

    session.stop()
    await task

    assert ["UID", "3:*"] in transport.searches
    assert transport.fetches[-1] == [3]
    assert len(index.records) == 3


@pytest.mark.asyncio
async def test_repeated_new_mail_events_fetch_once() -> None:
    index = FakeIndex()
    transport = FakeTransport(_mailbox(1))
    session, _ = _session(transport, index=index)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: session.state == SessionState.LIVE)
    transport.deliver(2, make_rfc822(message_id="<m2@example.com>"))
    transport.expunge(1)
    transport.events.put_nowait(NewMail(count=2))
    await wait_until(lambda: index.by_message_id("<m2@example.com>"))
    await asyncio.sleep(0.05)

    session.stop()
    await task

    assert [f for f in transport.fetches if 2 in f] == [[2]]


@pytest.mark.asyncio
async def test_keepalive_is_sent_on_interval() -> None:
    transport = FakeTransport()
    session, _ = _session(transport, keepalive_interval=0.03)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: transport.keepalives >= 2)
    session.stop()
    await task


@pytest.mark.asyncio
async def test_keepalive_failure_ends_session_with_error() -> None:
    transport = FakeTransport()
    transport.keepalive_error = TransportError("NOOP failed")
    session, registry = _session(transport, keepalive_interval=0.02)

    outcome = await asyncio.wait_for(session.run(), timeout=2)

    assert outcome.state == SessionState.ERROR
    assert outcome.stopped is False
    assert "NOOP failed" in outcome.error
    status = registry.status("acct-1")
    assert status.connected is False
    assert status.error == "NOOP failed"


@pytest.mark.asyncio
async def test_connect_failure_is_reported() -> None:
    transport = FakeTransport()
    transport.connect_error = TransportError("AUTHENTICATIONFAILED")
    session, registry = _session(transport)

    outcome = await session.run()

    assert outcome.state == SessionState.ERROR
    assert registry.status("acct-1").error == "AUTHENTICATIONFAILED"
    assert transport.closed is True


@pytest.mark.asyncio
async def test_server_bye_closes_session() -> None:
    transport = FakeTransport()
    session, _ = _session(transport)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: session.state == SessionState.LIVE)
    transport.drop()
    outcome = await asyncio.wait_for(task, timeout=2)

    assert outcome.state == SessionState.CLOSED
    assert outcome.stopped is False
    assert outcome.error


@pytest.mark.asyncio
async def test_superseded_session_stops_quietly() -> None:
    transport = FakeTransport()
    session, registry = _session(transport)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: session.state == SessionState.LIVE)
    registry.begin_generation("acct-1")
    outcome = await asyncio.wait_for(task, timeout=2)

    assert outcome.superseded is True
    assert transport.closed is True


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_pipelines() -> None:
    release = asyncio.Event()

    class SlowClassifier(FakeClassifier):
        async def classify(self, subject, body, sender):
            await release.wait()
            return Category.INTERESTED

    index = FakeIndex()
    transport = FakeTransport()
    session, _ = _session(transport, index=index, classifier=SlowClassifier())

    task = asyncio.create_task(session.run())
    await wait_until(lambda: session.state == SessionState.LIVE)
    transport.deliver(1, make_rfc822(message_id="<slow@example.com>"))
    await wait_until(lambda: session.in_flight == 1)

    session.stop()
    await asyncio.sleep(0.05)
    assert not task.done()

    release.set()
    await asyncio.wait_for(task, timeout=2)
    assert index.by_message_id("<slow@example.com>")[0].category == Category.INTERESTED


@pytest.mark.asyncio
async def test_drain_timeout_cancels_stuck_pipelines() -> None:
    class StuckClassifier(FakeClassifier):
        async def classify(self, subject, body, sender):
            await asyncio.sleep(10)
            return Category.SPAM

    transport = FakeTransport()
    session, _ = _session(transport, classifier=StuckClassifier(), drain_timeout=0.05)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: session.state == SessionState.LIVE)
    transport.deliver(1, make_rfc822())
    await wait_until(lambda: session.in_flight == 1)

    session.stop()
    outcome = await asyncio.wait_for(task, timeout=2)

    assert outcome.state == SessionState.CLOSED
    assert session.in_flight == 0


@pytest.mark.asyncio
async def test_mail_arriving_during_initial_fetch_is_picked_up() -> None:
    class RacingTransport(FakeTransport):
        async def fetch_messages(self, uids):
            result = await super().fetch_messages(uids)
            if len(self.fetches) == 1:
                # lands between the initial SEARCH and IDLE without a notification
                self.mailbox[2] = make_rfc822(message_id="<b@example.com>", subject="Late arrival")
            return result

    index = FakeIndex()
    transport = RacingTransport({1: make_rfc822(message_id="<a@example.com>")})
    session, _ = _session(transport, index=index)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: index.by_message_id("<b@example.com>"))
    session.stop()
    await task

    assert {r.message_id for r in index.records.values()} == {"<a@example.com>", "<b@example.com>"}
    assert transport.fetches == [[1], [2]]


@pytest.mark.asyncio
async def test_keepalive_picks_up_mail_without_notification() -> None:
    index = FakeIndex()
    transport = FakeTransport(_mailbox(1))
    session, _ = _session(transport, index=index, keepalive_interval=0.05)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: ["UID", "2:*"] in transport.searches)
    transport.mailbox[2] = make_rfc822(message_id="<quiet@example.com>")
    await wait_until(lambda: index.by_message_id("<quiet@example.com>"))

    session.stop()
    await task

    assert transport.keepalives >= 1
    assert len(index.records) == 2


@pytest.mark.asyncio
async def test_initial_sync_pipelines_are_bounded_by_max_concurrency() -> None:
    release = asyncio.Event()
    active = 0
    peak = 0

    class GatedClassifier(FakeClassifier):
        async def classify(self, subject, body, sender):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            try:
                await release.wait()
            finally:
                active -= 1
            return Category.SPAM

    index = FakeIndex()
    transport = FakeTransport(_mailbox(10))
    session, _ = _session(transport, index=index, classifier=GatedClassifier(), max_concurrency=3)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: active == 3)
    await asyncio.sleep(0.05)
    assert peak == 3

    release.set()
    await wait_until(lambda: session.state == SessionState.LIVE)
    session.stop()
    await task

    assert peak == 3
    assert len(index.records) == 10
    assert all(r.category == Category.SPAM for r in index.records.values())


@pytest.mark.asyncio
async def test_one_failing_pipeline_does_not_abort_initial_sync() -> None:
    class FlakyPipeline(IngestEmailUseCase):
        async def process(self, raw):
            if raw.uid == 5:
                raise RuntimeError("index exploded")
            return await super().process(raw)

    index = FakeIndex()
    transport = FakeTransport(_mailbox(10))
    pipeline = FlakyPipeline(index, FakeClassifier(), RecordingNotifier())
    session, _ = _session(transport, pipeline=pipeline)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: session.state == SessionState.LIVE)
    session.stop()
    outcome = await task

    assert {r.message_id for r in index.records.values()} == {
        f"<m{uid}@example.com>" for uid in range(1, 11) if uid != 5
    }
    assert outcome.state == SessionState.CLOSED
    assert outcome.error is None
