"""Duplicate detection by protocol-level Message-ID."""

from __future__ import annotations

from loguru import logger

from onebox.application.ports.email_index import EmailIndex
from onebox.domain.errors import DedupCheckError, StorageError


class DeduplicationGate:
    """Decides whether a message id has already been ingested.

    Two layers: the durable index, and an in-process set of ids whose
    ingestion is currently in flight so that two copies arriving in the
    same batch cannot both pass before either is stored. Admission must be
    released once the record is stored (or abandoned).
    """

    def __init__(self, index: EmailIndex, fail_open: bool = False) -> None:
        self.index = index
        self.fail_open = fail_open
        self._in_flight: set[str] = set()

    async def admit(self, message_id: str, *, generated: bool = False) -> bool:
        """True if the caller may ingest this message id.

        Raises DedupCheckError when the index lookup fails and the gate
        fails closed.
        """
        if generated:
            # Generated ids never match anything already stored
            return True
        if message_id in self._in_flight:
            logger.debug(f"Message {message_id} already being ingested")
            return False

        # Reserve before the first await
        self._in_flight.add(message_id)
        try:
            exists = await self.index.exists(message_id)
        except StorageError as e:
            if self.fail_open:
                logger.warning(f"Dedup lookup failed for {message_id}, treating as new: {e}")
                return True
            self._in_flight.discard(message_id)
            raise DedupCheckError(f"Dedup lookup failed for {message_id}: {e}") from e
        except BaseException:
            self._in_flight.discard(message_id)
            raise

        if exists:
            self._in_flight.discard(message_id)
            return False
        return True

    def release(self, message_id: str) -> None:
        self._in_flight.discard(message_id)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)
