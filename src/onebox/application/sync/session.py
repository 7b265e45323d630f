"""One account's mailbox session: connect, initial sync, live watch.

The session owns its transport exclusively. Mailbox notifications, keepalive
deadlines and stop requests all arrive on a single control queue that the
live loop drains in order, so transport commands are never interleaved.
Ingestion pipelines run as tracked tasks off the session loop, bounded by a
semaphore.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from loguru import logger

from onebox.application.ports.mail_transport import Expunged, MailTransport, NewMail, RawEmail
from onebox.application.sync.registry import SessionHandle
from onebox.application.use_cases.ingest_email import IngestEmailUseCase, IngestResult
from onebox.domain.errors import ConnectionClosedError, StaleSessionError, TransportError
from onebox.domain.models import EmailAccount


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    INITIAL_SYNC = "initial_sync"
    LIVE = "live"
    ERROR = "error"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionOptions:
    initial_sync_limit: int = 10
    keepalive_interval: float = 29 * 60
    idle_poll: float = 5.0
    max_concurrency: int = 5
    drain_timeout: float = 10.0


@dataclass(frozen=True)
class SessionContext:
    account: EmailAccount
    handle: SessionHandle
    options: SessionOptions


@dataclass(frozen=True)
class KeepAliveDue:
    pass


@dataclass(frozen=True)
class StopRequested:
    pass


SessionEvent = Union[NewMail, Expunged, KeepAliveDue, StopRequested]


@dataclass
class SessionOutcome:
    state: SessionState
    error: Optional[str] = None
    stopped: bool = False
    superseded: bool = False


class AccountSession:
    def __init__(
        self,
        context: SessionContext,
        transport: MailTransport,
        pipeline: IngestEmailUseCase,
        semaphore: Optional[asyncio.Semaphore] = None,
    ):
        self.context = context
        self.transport = transport
        self.pipeline = pipeline
        self._semaphore = semaphore or asyncio.Semaphore(context.options.max_concurrency)
        self._control: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._in_flight: set[asyncio.Task] = set()
        self._observed: set[int] = set()
        self._high_water = 0
        self._last_keepalive = 0.0
        self._stopping = False
        self._state = SessionState.DISCONNECTED

    @property
    def account_id(self) -> str:
        return self.context.account.id

    @property
    def generation(self) -> int:
        return self.context.handle.generation

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def _set_state(self, state: SessionState) -> None:
        logger.debug(f"{self.account_id}[gen {self.generation}]: {self._state.value} -> {state.value}")
        self._state = state

    def stop(self) -> None:
        """Ask the session to end after the current command."""
        if self._stopping:
            return
        self._stopping = True
        self._control.put_nowait(StopRequested())

    async def run(self) -> SessionOutcome:
        account = self.context.account
        handle = self.context.handle
        error: Optional[str] = None
        superseded = False
        final = SessionState.CLOSED

        try:
            self._set_state(SessionState.CONNECTING)
            logger.info(f"Connecting to IMAP for {account.email}")
            await self.transport.connect()
            await self.transport.select_folder(account.folder)
            handle.mark_connected()
            logger.info(f"Connected to IMAP for {account.email}")

            if not self._stopping:
                self._set_state(SessionState.INITIAL_SYNC)
                await self._initial_sync()
                handle.mark_synced()

            if not self._stopping:
                self._set_state(SessionState.LIVE)
                await self._live()
        except StaleSessionError as e:
            logger.info(f"Session superseded for {account.email}: {e}")
            superseded = True
        except ConnectionClosedError as e:
            logger.warning(f"IMAP connection closed for {account.email}: {e}")
            error = str(e) or "connection closed"
        except TransportError as e:
            logger.error(f"IMAP error for {account.email}: {e}")
            error = str(e)
            final = SessionState.ERROR
        except Exception as e:
            logger.exception(f"Unexpected session failure for {account.email}: {e}")
            error = str(e)
            final = SessionState.ERROR
        finally:
            await self._drain()
            await self._close_transport()
            if not superseded:
                try:
                    handle.mark_disconnected(error)
                except StaleSessionError:
                    superseded = True

        self._set_state(final)
        return SessionOutcome(state=final, error=error, stopped=self._stopping, superseded=superseded)

    # =========================================================================
    # Initial sync
    # =========================================================================

    async def _initial_sync(self) -> None:
        limit = self.context.options.initial_sync_limit
        uids = sorted(await self.transport.list_messages(["ALL"]))
        if uids:
            self._high_water = uids[-1]
        recent = uids[-limit:] if limit > 0 else []
        logger.info(f"Found {len(uids)} emails for {self.context.account.email}, syncing last {len(recent)}")
        if not recent:
            return

        self._observed.update(recent)
        raw = await self.transport.fetch_messages(recent)
        missing = [uid for uid in recent if uid not in raw]
        if missing:
            logger.warning(f"{self.account_id}: server returned no body for UIDs {missing}")

        results = await asyncio.gather(*(self._run_pipeline(uid, raw[uid]) for uid in recent if uid in raw))
        ingested = sum(1 for r in results if r is not None and r.record is not None)
        logger.info(f"Initial sync complete for {self.context.account.email}: {ingested} new of {len(raw)} fetched")

    # =========================================================================
    # Live watch
    # =========================================================================

    def _now(self) -> float:
        return asyncio.get_running_loop().time()

    async def _live(self) -> None:
        self._last_keepalive = self._now()
        # Mail that arrived during the initial SEARCH/FETCH raised no event
        await self._fetch_new()
        logger.info(f"IDLE mode active for {self.context.account.email}")

        while not self._stopping:
            if not self.context.handle.is_current:
                raise StaleSessionError(f"{self.account_id}: generation {self.generation} superseded")
            if self._control.empty():
                await self._poll()
                continue
            await self._handle(self._control.get_nowait())

    async def _poll(self) -> None:
        options = self.context.options
        due_in = options.keepalive_interval - (self._now() - self._last_keepalive)
        if due_in <= 0:
            self._control.put_nowait(KeepAliveDue())
            return

        for event in await self.transport.wait_for_events(timeout=min(options.idle_poll, due_in)):
            self._control.put_nowait(event)

    async def _handle(self, event: SessionEvent) -> None:
        if isinstance(event, StopRequested):
            self._stopping = True
        elif isinstance(event, KeepAliveDue):
            await self.transport.send_keepalive()
            self._last_keepalive = self._now()
            logger.debug(f"Keepalive sent for {self.context.account.email}")
            await self._fetch_new()
        elif isinstance(event, NewMail):
            logger.info(f"New email detected for {self.context.account.email} (exists={event.count})")
            await self._fetch_new()
        elif isinstance(event, Expunged):
            logger.info(f"Email deleted in {self.context.account.email} (position {event.position})")

    async def _fetch_new(self) -> None:
        criteria = ["UID", f"{self._high_water + 1}:*"] if self._high_water else ["ALL"]
        # "n:*" always matches the last message, even when its UID is below n
        uids = sorted(
            uid for uid in await self.transport.list_messages(criteria)
            if uid > self._high_water and uid not in self._observed
        )
        if not uids:
            return

        self._observed.update(uids)
        self._high_water = uids[-1]
        raw = await self.transport.fetch_messages(uids)
        for uid in uids:
            if uid in raw:
                self._spawn(uid, raw[uid])
        self.context.handle.mark_synced()

    # =========================================================================
    # Pipelines
    # =========================================================================

    def _spawn(self, uid: int, data: bytes) -> None:
        task = asyncio.create_task(self._run_pipeline(uid, data), name=f"ingest-{self.account_id}-{uid}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run_pipeline(self, uid: int, data: bytes) -> Optional[IngestResult]:
        raw = RawEmail(account_id=self.account_id, folder=self.context.account.folder, uid=uid, rfc822_bytes=data)
        async with self._semaphore:
            try:
                return await self.pipeline.process(raw)
            except Exception as e:
                logger.exception(f"Pipeline failed for UID {uid} in {self.account_id}: {e}")
                return None

    async def _drain(self) -> None:
        if not self._in_flight:
            return
        pending_tasks = list(self._in_flight)
        logger.info(f"{self.account_id}: waiting for {len(pending_tasks)} in-flight emails")
        _, pending = await asyncio.wait(pending_tasks, timeout=self.context.options.drain_timeout)
        if pending:
            logger.warning(f"{self.account_id}: cancelling {len(pending)} emails still in flight")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def _close_transport(self) -> None:
        try:
            await self.transport.close()
        except Exception as e:
            logger.warning(f"Error closing IMAP connection for {self.account_id}: {e}")

