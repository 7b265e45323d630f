from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol, Sequence, Union

from onebox.domain.models import EmailAccount


@dataclass(frozen=True)
class RawEmail:
    account_id: str
    folder: str
    uid: int
    rfc822_bytes: bytes


@dataclass(frozen=True)
class NewMail:
    # Mailbox size reported by the server (EXISTS)
    count: int


@dataclass(frozen=True)
class Expunged:
    position: int


MailboxEvent = Union[NewMail, Expunged]


class MailTransport(Protocol):
    """One authenticated connection to one mailbox. Not safe for concurrent callers."""

    async def connect(self) -> None: ...
    async def select_folder(self, folder: str) -> None: ...
    async def list_messages(self, criteria: Sequence[str]) -> list[int]: ...
    async def fetch_messages(self, uids: Sequence[int]) -> dict[int, bytes]: ...
    async def wait_for_events(self, timeout: float) -> list[MailboxEvent]: ...
    async def send_keepalive(self) -> None: ...
    async def close(self) -> None: ...


TransportFactory = Callable[[EmailAccount], MailTransport]
