"""Per-account connection state with generation fencing.

Every session is started under a new generation number. Mutations go
through a SessionHandle that carries the generation it was issued for; once a
newer generation exists the old handle is rejected with StaleSessionError.
Status objects are immutable and replaced whole, so readers only ever see
complete snapshots.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from onebox.domain.errors import StaleSessionError
from onebox.domain.models import ConnectionStatus, EmailAccount, utcnow


@dataclass
class _AccountSlot:
    account: EmailAccount
    status: ConnectionStatus
    generation: int = 0
    attempts: int = 0


class SessionHandle:
    """Write access to one account's state for one session generation."""

    def __init__(self, registry: "SessionRegistry", account_id: str, generation: int):
        self.registry = registry
        self.account_id = account_id
        self.generation = generation

    @property
    def is_current(self) -> bool:
        return self.registry.is_current(self.account_id, self.generation)

    def mark_connected(self) -> None:
        """Connected; resets the reconnect counter."""
        slot = self.registry._fenced(self)
        slot.attempts = 0
        self.registry._set_status(slot, connected=True, error=None, fatal=False, last_sync=utcnow())

    def mark_synced(self) -> None:
        slot = self.registry._fenced(self)
        self.registry._set_status(slot, last_sync=utcnow())

    def mark_disconnected(self, error: str | None = None) -> None:
        slot = self.registry._fenced(self)
        self.registry._set_status(slot, connected=False, error=error, last_sync=utcnow())

    def __repr__(self) -> str:
        return f"SessionHandle({self.account_id!r}, gen={self.generation})"


class SessionRegistry:
    """Owned by the engine; the only place account state lives."""

    def __init__(self) -> None:
        self._slots: dict[str, _AccountSlot] = {}

    def register(self, account: EmailAccount) -> None:
        if account.id in self._slots:
            raise ValueError(f"Account {account.id} already registered")
        self._slots[account.id] = _AccountSlot(account=account, status=ConnectionStatus(account_id=account.id))

    def _slot(self, account_id: str) -> _AccountSlot:
        try:
            return self._slots[account_id]
        except KeyError:
            raise KeyError(f"Unknown account: {account_id}") from None

    def _fenced(self, handle: SessionHandle) -> _AccountSlot:
        slot = self._slot(handle.account_id)
        if slot.generation != handle.generation:
            raise StaleSessionError(
                f"{handle.account_id}: generation {handle.generation} superseded by {slot.generation}"
            )
        return slot

    @staticmethod
    def _set_status(slot: _AccountSlot, **changes) -> None:
        changes.setdefault("reconnect_attempts", slot.attempts)
        changes.setdefault("generation", slot.generation)
        slot.status = slot.status.model_copy(update=changes)

    def account(self, account_id: str) -> EmailAccount:
        return self._slot(account_id).account

    @property
    def account_ids(self) -> list[str]:
        return list(self._slots)

    def begin_generation(self, account_id: str) -> SessionHandle:
        """Supersede any existing session and issue a handle for the next one."""
        slot = self._slot(account_id)
        slot.generation += 1
        self._set_status(slot, connected=False)
        logger.debug(f"{account_id}: starting session generation {slot.generation}")
        return SessionHandle(self, account_id, slot.generation)

    def is_current(self, account_id: str, generation: int) -> bool:
        return self._slot(account_id).generation == generation

    def generation(self, account_id: str) -> int:
        return self._slot(account_id).generation

    def attempts(self, account_id: str) -> int:
        return self._slot(account_id).attempts

    def increment_attempts(self, account_id: str, generation: int) -> int:
        slot = self._slot(account_id)
        if slot.generation != generation:
            raise StaleSessionError(f"{account_id}: retry for stale generation {generation}")
        slot.attempts += 1
        self._set_status(slot)
        return slot.attempts

    def reset_attempts(self, account_id: str) -> None:
        slot = self._slot(account_id)
        slot.attempts = 0
        self._set_status(slot, fatal=False)

    def mark_fatal(self, account_id: str, generation: int, error: str) -> None:
        slot = self._slot(account_id)
        if slot.generation != generation:
            return
        self._set_status(slot, connected=False, fatal=True, error=error)

    def status(self, account_id: str) -> ConnectionStatus:
        return self._slot(account_id).status

    def snapshot(self) -> list[ConnectionStatus]:
        return [slot.status for slot in self._slots.values()]
