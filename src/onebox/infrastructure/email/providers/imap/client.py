from __future__ import annotations
import asyncio
import imaplib
import socket
import ssl
from typing import Any, Callable, Optional, Sequence, TypeVar

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError
from loguru import logger

from onebox.application.ports.mail_transport import Expunged, MailboxEvent, NewMail
from onebox.domain.errors import ConnectionClosedError, TransportError
from onebox.domain.models import EmailAccount

T = TypeVar("T")

# imapclient surfaces failures from several layers
_TRANSPORT_ERRORS = (IMAPClientError, imaplib.IMAP4.error, socket.error, ssl.SSLError, OSError, EOFError)


class ImapMailTransport:
    """imapclient-backed MailTransport.

    IMAPClient is blocking, so every call runs in a worker thread. Calls are
    serialized with a lock because one IMAP connection cannot interleave
    commands. While IDLE is active any other command first ends it.

    Untagged EXISTS/EXPUNGE responses seen while leaving IDLE or answering
    NOOP are queued and handed out by the next wait_for_events().
    """

    def __init__(self, account: EmailAccount, timeout: float = 30.0) -> None:
        self.account = account
        self.timeout = timeout
        self._client: Optional[IMAPClient] = None
        self._idling = False
        self._pending: list[MailboxEvent] = []
        self._lock = asyncio.Lock()

    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        async with self._lock:
            try:
                return await asyncio.to_thread(fn, *args, **kwargs)
            except TransportError:
                raise
            except _TRANSPORT_ERRORS as e:
                raise TransportError(f"{self.account.email}: {e}") from e

    def _require(self) -> IMAPClient:
        if self._client is None:
            raise TransportError(f"{self.account.email}: not connected")
        return self._client

    def _end_idle(self) -> None:
        if self._idling:
            self._idling = False
            _, trailing = self._require().idle_done()
            self._pending.extend(self._events(trailing))

    # ----- blocking implementations -----

    def _connect_sync(self) -> None:
        client = IMAPClient(
            host=self.account.imap_host,
            port=self.account.imap_port,
            ssl=True,
            timeout=self.timeout,
        )
        try:
            client.login(self.account.email, self.account.password.get_secret_value())
        except _TRANSPORT_ERRORS:
            client.shutdown()
            raise
        self._client = client

    def _select_sync(self, folder: str) -> None:
        self._end_idle()
        self._require().select_folder(folder, readonly=True)

    def _search_sync(self, criteria: Sequence[str]) -> list[int]:
        self._end_idle()
        return sorted(int(uid) for uid in self._require().search(list(criteria)))

    def _fetch_sync(self, uids: Sequence[int]) -> dict[int, bytes]:
        self._end_idle()
        if not uids:
            return {}
        # BODY.PEEK leaves the \Seen flag untouched
        data = self._require().fetch(list(uids), ["BODY.PEEK[]"])
        out: dict[int, bytes] = {}
        for uid, parts in data.items():
            body = parts.get(b"BODY[]")
            if body:
                out[int(uid)] = bytes(body)
        return out

    def _events(self, responses) -> list[MailboxEvent]:
        events: list[MailboxEvent] = []
        for response in responses or []:
            if not isinstance(response, tuple) or not response:
                continue
            if response[0] == b"BYE":
                raise ConnectionClosedError(f"{self.account.email}: server said BYE")
            if len(response) >= 2 and response[1] == b"EXISTS":
                events.append(NewMail(count=int(response[0])))
            elif len(response) >= 2 and response[1] == b"EXPUNGE":
                events.append(Expunged(position=int(response[0])))
        return events

    def _wait_sync(self, timeout: float) -> list[MailboxEvent]:
        client = self._require()
        if self._pending:
            events, self._pending = self._pending, []
            return events
        if not self._idling:
            client.idle_start()
            self._idling = True
        events = self._events(client.idle_check(timeout=timeout))
        if events:
            # Leave IDLE so the caller can fetch; late responses still count
            self._idling = False
            _, trailing = client.idle_done()
            events.extend(self._events(trailing))
        return events

    def _noop_sync(self) -> None:
        self._end_idle()
        _, responses = self._require().noop()
        self._pending.extend(self._events(responses))

    def _close_sync(self) -> None:
        client = self._client
        self._client = None
        self._pending = []
        if client is None:
            return
        try:
            if self._idling:
                self._idling = False
                client.idle_done()
            client.logout()
        except _TRANSPORT_ERRORS as e:
            logger.debug(f"Logout from {self.account.email} failed: {e}")
            try:
                client.shutdown()
            except _TRANSPORT_ERRORS as e:
                logger.debug(f"Socket shutdown for {self.account.email} failed: {e}")

    # ----- MailTransport -----

    async def connect(self) -> None:
        logger.info(f"Connecting to IMAP {self.account.imap_host}:{self.account.imap_port} as {self.account.email}")
        await self._call(self._connect_sync)

    async def select_folder(self, folder: str) -> None:
        await self._call(self._select_sync, folder)

    async def list_messages(self, criteria: Sequence[str]) -> list[int]:
        return await self._call(self._search_sync, criteria)

    async def fetch_messages(self, uids: Sequence[int]) -> dict[int, bytes]:
        return await self._call(self._fetch_sync, uids)

    async def wait_for_events(self, timeout: float) -> list[MailboxEvent]:
        return await self._call(self._wait_sync, timeout)

    async def send_keepalive(self) -> None:
        await self._call(self._noop_sync)

    async def close(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._close_sync)


def imap_transport_factory(timeout: float = 30.0) -> Callable[[EmailAccount], ImapMailTransport]:
    def factory(account: EmailAccount) -> ImapMailTransport:
        return ImapMailTransport(account, timeout=timeout)

    return factory
