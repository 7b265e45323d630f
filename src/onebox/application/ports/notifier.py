from __future__ import annotations
from dataclasses import dataclass
from typing import Protocol

from onebox.domain.models import EmailRecord

@dataclass(frozen=True)
class FanoutResult:
    attempted: int = 0
    succeeded: int = 0

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded

class Notifier(Protocol):
    # Never raises; per-destination failures are only counted
    async def notify_interested(self, record: EmailRecord) -> FanoutResult: ...
