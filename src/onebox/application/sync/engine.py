"""Top-level synchronization engine: one live session per configured account."""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from loguru import logger

from onebox.application.ports.mail_transport import TransportFactory
from onebox.application.sync.reconnect import BackoffPolicy, ReconnectScheduler
from onebox.application.sync.registry import SessionRegistry
from onebox.application.sync.session import AccountSession, SessionContext, SessionOptions
from onebox.application.use_cases.ingest_email import IngestEmailUseCase
from onebox.domain.errors import ConfigurationError
from onebox.domain.models import ConnectionStatus, EmailAccount


class SyncEngine:
    """Keeps every account connected and feeds new mail into the pipeline.

    Accounts are fully independent: a failure in one session only schedules a
    reconnect for that account. All account state lives in the registry and
    is exposed to readers as immutable snapshots through status().
    """

    def __init__(
        self,
        accounts: Sequence[EmailAccount],
        transport_factory: TransportFactory,
        pipeline: IngestEmailUseCase,
        options: Optional[SessionOptions] = None,
        policy: Optional[BackoffPolicy] = None,
    ):
        self._accounts = list(accounts)
        self.transport_factory = transport_factory
        self.pipeline = pipeline
        self.options = options or SessionOptions()
        self.registry = SessionRegistry()
        self.scheduler = ReconnectScheduler(self.registry, policy or BackoffPolicy(), self._launch)
        self._sessions: dict[str, AccountSession] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._running = False

    @property
    def accounts(self) -> list[EmailAccount]:
        return list(self._accounts)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if not self._accounts:
            raise ConfigurationError("No email accounts configured")
        if self._running:
            return

        logger.info(f"Starting sync for {len(self._accounts)} account(s)")
        self._running = True
        known = set(self.registry.account_ids)
        for account in self._accounts:
            if account.id not in known:
                self.registry.register(account)
            self._semaphores[account.id] = asyncio.Semaphore(self.options.max_concurrency)
            self._launch(account.id)

    def _launch(self, account_id: str) -> None:
        if not self._running:
            return

        account = self.registry.account(account_id)
        handle = self.registry.begin_generation(account_id)
        try:
            transport = self.transport_factory(account)
        except Exception as e:
            logger.error(f"Could not create IMAP transport for {account.email}: {e}")
            handle.mark_disconnected(str(e))
            self.scheduler.schedule(account_id, handle.generation)
            return

        session = AccountSession(
            SessionContext(account=account, handle=handle, options=self.options),
            transport,
            self.pipeline,
            semaphore=self._semaphores[account_id],
        )
        self._sessions[account_id] = session
        self._tasks[account_id] = asyncio.create_task(
            self._supervise(session),
            name=f"session-{account_id}-{handle.generation}",
        )

    async def _supervise(self, session: AccountSession) -> None:
        outcome = await session.run()
        if outcome.superseded or outcome.stopped or not self._running:
            return
        self.scheduler.schedule(session.account_id, session.generation)

    def status(self) -> list[ConnectionStatus]:
        return self.registry.snapshot()

    def account_status(self, account_id: str) -> ConnectionStatus:
        return self.registry.status(account_id)

    async def restart_account(self, account_id: str) -> ConnectionStatus:
        """Drop the current session (if any) and connect again with a fresh retry budget."""
        if not self._running:
            raise RuntimeError("Sync engine is not running")
        self.registry.account(account_id)

        self.scheduler.cancel(account_id)
        old = self._sessions.pop(account_id, None)
        old_task = self._tasks.pop(account_id, None)
        self.registry.reset_attempts(account_id)
        # The new generation fences the old session out of the registry
        self._launch(account_id)

        if old is not None:
            old.stop()
        if old_task is not None:
            await self._wait_tasks([old_task])

        logger.info(f"Manual reconnect issued for {account_id}")
        return self.registry.status(account_id)

    async def stop(self) -> None:
        if not self._running:
            return
        logger.info("Stopping sync engine")
        self._running = False
        self.scheduler.cancel_all()

        for session in self._sessions.values():
            session.stop()
        await self._wait_tasks(list(self._tasks.values()))
        self._tasks.clear()
        self._sessions.clear()
        logger.info("Sync engine stopped")

    async def _wait_tasks(self, tasks: list[asyncio.Task]) -> None:
        if not tasks:
            return
        # One idle poll to notice the stop, the drain window, and slack for logout
        timeout = self.options.idle_poll + self.options.drain_timeout + 5.0
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} session(s) that did not stop in {timeout:.0f}s")
            await asyncio.gather(*pending, return_exceptions=True)
