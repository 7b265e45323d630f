"""Application layer - ingestion pipeline and mailbox synchronization."""

from onebox.application.use_cases.backfill_categories import BackfillCategoriesUseCase
from onebox.application.use_cases.dedup import DeduplicationGate
from onebox.application.use_cases.ingest_email import IngestEmailUseCase, IngestOutcome, IngestResult

__all__ = [
    "BackfillCategoriesUseCase",
    "DeduplicationGate",
    "IngestEmailUseCase",
    "IngestOutcome",
    "IngestResult",
]
