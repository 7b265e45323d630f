"""Wires settings into the concrete collaborators and the sync engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from onebox.application.ports.classifier import EmailClassifier
from onebox.application.ports.email_index import EmailIndex
from onebox.application.ports.mail_transport import TransportFactory
from onebox.application.ports.notifier import Notifier
from onebox.application.ports.reply_generator import ReplyGenerator
from onebox.application.sync import BackoffPolicy, SessionOptions, SyncEngine
from onebox.application.use_cases.backfill_categories import BackfillCategoriesUseCase
from onebox.application.use_cases.dedup import DeduplicationGate
from onebox.application.use_cases.ingest_email import IngestEmailUseCase
from onebox.infrastructure.classification import create_classifier, create_reply_suggester
from onebox.infrastructure.email.providers.imap.client import imap_transport_factory
from onebox.infrastructure.settings import Settings
from onebox.infrastructure.stores import SQLiteEmailIndex
from onebox.infrastructure.webhooks import create_notifier


@dataclass
class Services:
    settings: Settings
    index: EmailIndex
    classifier: EmailClassifier
    notifier: Notifier
    pipeline: IngestEmailUseCase
    backfill: BackfillCategoriesUseCase
    engine: SyncEngine
    replies: ReplyGenerator

    async def aclose(self) -> None:
        await self.engine.stop()
        aclose = getattr(self.notifier, "aclose", None)
        if aclose is not None:
            await aclose()


def session_options(settings: Settings) -> SessionOptions:
    return SessionOptions(
        initial_sync_limit=settings.imap_initial_sync_limit,
        keepalive_interval=settings.imap_keepalive_interval_seconds,
        idle_poll=settings.imap_idle_poll_seconds,
        max_concurrency=settings.pipeline_max_concurrency,
        drain_timeout=settings.shutdown_drain_timeout_seconds,
    )


def backoff_policy(settings: Settings) -> BackoffPolicy:
    return BackoffPolicy(
        base_delay=settings.imap_reconnect_base_delay_seconds,
        max_delay=settings.imap_reconnect_max_delay_seconds,
        max_attempts=settings.imap_max_reconnect_attempts,
    )


def build_services(
    settings: Settings,
    *,
    transport_factory: Optional[TransportFactory] = None,
    index: Optional[EmailIndex] = None,
    classifier: Optional[EmailClassifier] = None,
    notifier: Optional[Notifier] = None,
    replies: Optional[ReplyGenerator] = None,
) -> Services:
    """Build every component from settings. Any collaborator can be overridden."""
    index = index or SQLiteEmailIndex(settings.sqlite_db_path)
    classifier = classifier or create_classifier(settings)
    notifier = notifier or create_notifier(settings)

    gate = DeduplicationGate(index, fail_open=settings.dedup_fail_open)
    pipeline = IngestEmailUseCase(index=index, classifier=classifier, notifier=notifier, gate=gate)
    engine = SyncEngine(
        accounts=settings.email_accounts,
        transport_factory=transport_factory or imap_transport_factory(settings.imap_timeout_seconds),
        pipeline=pipeline,
        options=session_options(settings),
        policy=backoff_policy(settings),
    )

    logger.info(
        f"Services ready: {len(settings.email_accounts)} account(s), "
        f"llm_provider={settings.llm_provider}, dedup_fail_open={settings.dedup_fail_open}"
    )
    return Services(
        settings=settings,
        index=index,
        classifier=classifier,
        notifier=notifier,
        pipeline=pipeline,
        backfill=BackfillCategoriesUseCase(index, classifier),
        engine=engine,
        replies=replies or create_reply_suggester(settings),
    )
