"""Exponential-backoff reconnection of failed account sessions."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from onebox.application.sync.registry import SessionRegistry
from onebox.domain.errors import StaleSessionError

# Keeps 2 ** attempts representable as a float
_MAX_EXPONENT = 63


@dataclass(frozen=True)
class BackoffPolicy:
    base_delay: float = 5.0
    max_delay: float = 60.0
    max_attempts: int = 10

    def delay_for(self, attempts: int) -> float:
        """min(base * 2^attempts, cap)."""
        return min(self.base_delay * (2 ** min(max(attempts, 0), _MAX_EXPONENT)), self.max_delay)

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts


class ReconnectScheduler:
    """Re-arms account sessions after failure.

    At most one timer is pending per account. A timer remembers the session
    generation that failed; when it fires it only acts if that generation is
    still the newest one, so a session started in the meantime (manual
    restart) is never duplicated.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        policy: BackoffPolicy,
        launch: Callable[[str], None],
    ):
        self.registry = registry
        self.policy = policy
        self._launch = launch
        self._timers: dict[str, asyncio.Task] = {}

    def schedule(self, account_id: str, generation: int) -> Optional[float]:
        """Arm a retry for a failed generation. Returns the delay, or None if not scheduled."""
        if not self.registry.is_current(account_id, generation):
            logger.debug(f"{account_id}: ignoring failure of superseded generation {generation}")
            return None

        pending = self._timers.get(account_id)
        if pending is not None and not pending.done():
            logger.debug(f"{account_id}: reconnect already pending")
            return None

        attempts = self.registry.attempts(account_id)
        if self.policy.exhausted(attempts):
            logger.error(f"Max reconnection attempts ({self.policy.max_attempts}) reached for {account_id}")
            self.registry.mark_fatal(account_id, generation, "max reconnection attempts reached")
            return None

        delay = self.policy.delay_for(attempts)
        logger.info(f"Reconnecting {account_id} in {delay:.1f}s (attempt {attempts + 1})")
        self._timers[account_id] = asyncio.create_task(
            self._fire(account_id, generation, delay),
            name=f"reconnect-{account_id}",
        )
        return delay

    async def _fire(self, account_id: str, generation: int, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        finally:
            if self._timers.get(account_id) is asyncio.current_task():
                del self._timers[account_id]

        try:
            self.registry.increment_attempts(account_id, generation)
        except StaleSessionError:
            logger.debug(f"{account_id}: retry for generation {generation} superseded, not firing")
            return
        self._launch(account_id)

    def pending(self, account_id: str) -> bool:
        timer = self._timers.get(account_id)
        return timer is not None and not timer.done()

    def cancel(self, account_id: str) -> None:
        timer = self._timers.pop(account_id, None)
        if timer is not None:
            timer.cancel()

    def cancel_all(self) -> None:
        for account_id in list(self._timers):
            self.cancel(account_id)
