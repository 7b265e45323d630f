"""Sync worker - keeps every configured mailbox connected until signalled."""

from __future__ import annotations

import asyncio
import signal
import sys

from loguru import logger
from pydantic import ValidationError
from pydantic_settings import SettingsError

from onebox.domain.errors import ConfigurationError, OneboxError
from onebox.infrastructure.factory import Services, build_services
from onebox.infrastructure.settings import Settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


class SyncWorker:
    """Runs the sync engine until SIGINT/SIGTERM, then shuts it down cleanly."""

    def __init__(self, services: Services):
        self.services = services
        self._stop = asyncio.Event()

    def _handle_shutdown(self, signum: int) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        self._stop.set()

    def request_stop(self) -> None:
        self._stop.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(signum, self._handle_shutdown, signum)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {signum} not supported here")

    async def run(self) -> int:
        engine = self.services.engine
        self._install_signal_handlers()

        logger.info(f"Sync worker starting with {len(engine.accounts)} account(s)")
        for account in engine.accounts:
            logger.info(f"  - {account.id}: {account.email} ({account.imap_host}/{account.folder})")

        try:
            await engine.start()
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return 1

        try:
            await self._stop.wait()
        finally:
            await self.services.aclose()
            self._log_status()

        logger.info("Worker shutdown complete")
        return 0

    def _log_status(self) -> None:
        for status in self.services.engine.status():
            logger.info(
                f"Account {status.account_id}: connected={status.connected}, "
                f"generation={status.generation}, attempts={status.reconnect_attempts}, "
                f"fatal={status.fatal}, error={status.error}"
            )


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level.upper())


def main() -> int:
    """Entry point for the sync worker."""
    configure_logging()

    try:
        settings = Settings()
    except (ValidationError, SettingsError) as e:
        logger.error(f"Invalid configuration:\n{e}")
        return 1

    configure_logging(settings.log_level)
    logger.info("=" * 60)
    logger.info(f"{settings.app_name} Worker")
    logger.info("=" * 60)

    if not settings.email_accounts:
        logger.error("No email accounts configured! Set EMAIL_ACCOUNTS")
        return 1

    try:
        services = build_services(settings)
    except OneboxError as e:
        logger.error(f"Failed to initialize services: {e}")
        return 1

    return asyncio.run(SyncWorker(services).run())


if __name__ == "__main__":
    raise SystemExit(main())
