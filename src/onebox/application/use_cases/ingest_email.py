"""Ingest one raw email: normalize, dedupe, store, classify, notify."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from loguru import logger

from onebox.application.ports.classifier import EmailClassifier
from onebox.application.ports.email_index import EmailIndex
from onebox.application.ports.mail_transport import RawEmail
from onebox.application.ports.notifier import FanoutResult, Notifier
from onebox.application.use_cases.dedup import DeduplicationGate
from onebox.domain.entities.email_message import EmailMessage
from onebox.domain.errors import DedupCheckError, DuplicateRecordError, StorageError
from onebox.domain.models import DEFAULT_CATEGORY, Category, EmailRecord
from onebox.infrastructure.email.providers.imap.mapper import rfc822_to_email_message

Normalizer = Callable[[str, str, bytes], EmailMessage]


class IngestOutcome(str, Enum):
    INGESTED = "ingested"
    DUPLICATE = "duplicate"
    PARSE_FAILED = "parse_failed"
    DEDUP_FAILED = "dedup_failed"
    STORE_FAILED = "store_failed"


@dataclass
class IngestResult:
    outcome: IngestOutcome
    record: Optional[EmailRecord] = None
    category_stored: bool = False
    fanout: Optional[FanoutResult] = None


class IngestEmailUseCase:
    """Ingestion pipeline for a single message.

    Flow:
    1. Normalize the RFC822 bytes (parse errors skip the message)
    2. Dedup gate on Message-ID (skip duplicates before any AI call)
    3. Store the record with the default category
    4. Classify (always yields a Category)
    5. Store the category
    6. Notify webhooks when the category is Interested

    Each step contains its own failures. A record stored in step 3 is never
    rolled back.
    """

    def __init__(
        self,
        index: EmailIndex,
        classifier: EmailClassifier,
        notifier: Notifier,
        gate: Optional[DeduplicationGate] = None,
        normalizer: Normalizer = rfc822_to_email_message,
    ) -> None:
        self.index = index
        self.classifier = classifier
        self.notifier = notifier
        self.gate = gate or DeduplicationGate(index)
        self.normalizer = normalizer

    async def process(self, raw: RawEmail) -> IngestResult:
        try:
            msg = self.normalizer(raw.account_id, raw.folder, raw.rfc822_bytes)
        except Exception as e:
            logger.error(f"Skipping unparseable email UID {raw.uid} in {raw.account_id}/{raw.folder}: {e}")
            return IngestResult(IngestOutcome.PARSE_FAILED)

        try:
            admitted = await self.gate.admit(msg.message_id, generated=msg.message_id_generated)
        except DedupCheckError as e:
            logger.error(f"Not ingesting UID {raw.uid} for {raw.account_id}: {e}")
            return IngestResult(IngestOutcome.DEDUP_FAILED)

        if not admitted:
            logger.info(f"Duplicate skipped (messageId={msg.message_id}) for {raw.account_id}")
            return IngestResult(IngestOutcome.DUPLICATE)

        record = self._to_record(msg)
        try:
            await self.index.insert(record)
        except DuplicateRecordError:
            logger.info(f"Duplicate skipped at insert (messageId={msg.message_id}) for {raw.account_id}")
            return IngestResult(IngestOutcome.DUPLICATE)
        except StorageError as e:
            logger.error(f"Failed to index email {msg.message_id} for {raw.account_id}: {e}")
            return IngestResult(IngestOutcome.STORE_FAILED)
        finally:
            self.gate.release(msg.message_id)

        category = await self._classify(record)
        category_stored = await self._store_category(record, category)
        if category_stored:
            record = record.model_copy(update={"category": category})

        fanout = None
        if category == Category.INTERESTED and category_stored:
            fanout = await self._notify(record)

        logger.info(f"Processed email: {record.subject[:60]} [{category.value}]")
        return IngestResult(IngestOutcome.INGESTED, record=record, category_stored=category_stored, fanout=fanout)

    @staticmethod
    def _to_record(msg: EmailMessage) -> EmailRecord:
        return EmailRecord(
            account_id=msg.account_id,
            folder=msg.folder,
            subject=msg.subject,
            body=msg.body,
            html_body=msg.html_body,
            sender=msg.sender,
            to=msg.to,
            cc=msg.cc,
            date=msg.date,
            category=DEFAULT_CATEGORY,
            message_id=msg.message_id,
            in_reply_to=msg.in_reply_to,
            references=msg.references,
        )

    async def _classify(self, record: EmailRecord) -> Category:
        try:
            return Category.parse(await self.classifier.classify(record.subject, record.body, record.sender))
        except Exception as e:
            logger.error(f"Classifier raised for {record.message_id}, using {DEFAULT_CATEGORY.value}: {e}")
            return DEFAULT_CATEGORY

    async def _store_category(self, record: EmailRecord, category: Category) -> bool:
        try:
            await self.index.update_category(record.id, category)
            return True
        except StorageError as e:
            logger.error(f"Failed to store category {category.value} for {record.id}: {e}")
            return False

    async def _notify(self, record: EmailRecord) -> Optional[FanoutResult]:
        try:
            return await self.notifier.notify_interested(record)
        except Exception as e:
            logger.error(f"Notification fanout failed for {record.id}: {e}")
            return None
