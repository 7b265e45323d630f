"""Re-classify records still stored as Uncategorized."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from onebox.application.ports.classifier import EmailClassifier
from onebox.application.ports.email_index import EmailIndex
from onebox.domain.errors import StorageError
from onebox.domain.models import DEFAULT_CATEGORY

MAX_BACKFILL_BATCH = 200


@dataclass
class BackfillResult:
    processed: int = 0
    categorized: int = 0
    failed: int = 0


class BackfillCategoriesUseCase:
    def __init__(self, index: EmailIndex, classifier: EmailClassifier) -> None:
        self.index = index
        self.classifier = classifier

    async def run(self, limit: int = 50) -> BackfillResult:
        limit = max(1, min(limit, MAX_BACKFILL_BATCH))
        batch = await self.index.find_uncategorized(limit)
        result = BackfillResult(processed=len(batch))

        for record in batch:
            category = await self.classifier.classify(record.subject, record.body or "", record.sender)
            if category == DEFAULT_CATEGORY:
                continue
            try:
                await self.index.update_category(record.id, category)
                result.categorized += 1
            except StorageError as e:
                logger.error(f"Backfill could not store category for {record.id}: {e}")
                result.failed += 1

        logger.info(
            f"Backfill complete: processed={result.processed}, "
            f"categorized={result.categorized}, failed={result.failed}"
        )
        return result
