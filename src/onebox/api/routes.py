"""
API routes for the Onebox sync service.

Read-only views over the durable index and the live connection state, plus
a few operator actions (backfill, reply drafts, manual reconnect, webhook test).
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger
from pydantic import BaseModel, Field

from onebox.application.use_cases.backfill_categories import MAX_BACKFILL_BATCH
from onebox.domain.errors import ConfigurationError, ReplyGenerationError, StorageError
from onebox.domain.models import Category, CategoryStats, ConnectionStatus, EmailRecord, SearchQuery, SuggestedReply
from onebox.infrastructure.factory import Services

router = APIRouter(prefix="/api")


def get_services(request: Request) -> Services:
    return request.app.state.services


# ============================================================================
# Request/Response Models
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str
    index: str
    accounts: int
    connected: int


class AccountInfo(BaseModel):
    """A configured mailbox. Credentials are never exposed."""

    id: str
    email: str
    imap_host: str
    imap_port: int
    folder: str


class EmailListResponse(BaseModel):
    emails: list[EmailRecord]
    count: int
    offset: int
    size: int


class BackfillResponse(BaseModel):
    processed: int
    categorized: int
    failed: int


class WebhookTestResponse(BaseModel):
    results: dict[str, bool] = Field(default_factory=dict)
    succeeded: int = 0
    attempted: int = 0


# ============================================================================
# Health Endpoints
# ============================================================================


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(services: Services = Depends(get_services)) -> HealthResponse:
    """Index reachability plus a connection summary."""
    statuses = services.engine.status()
    connected = sum(1 for s in statuses if s.connected)
    index_ok = await services.index.ping()

    status = "healthy" if index_ok and connected == len(statuses) else "degraded"
    return HealthResponse(
        status=status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=services.settings.app_version,
        index="healthy" if index_ok else "unavailable",
        accounts=len(services.engine.accounts),
        connected=connected,
    )


# ============================================================================
# Account Endpoints
# ============================================================================


@router.get("/accounts", response_model=list[AccountInfo], tags=["accounts"])
async def list_accounts(services: Services = Depends(get_services)) -> list[AccountInfo]:
    return [
        AccountInfo(id=a.id, email=a.email, imap_host=a.imap_host, imap_port=a.imap_port, folder=a.folder)
        for a in services.engine.accounts
    ]


@router.get("/accounts/status", response_model=list[ConnectionStatus], tags=["accounts"])
async def account_status(services: Services = Depends(get_services)) -> list[ConnectionStatus]:
    return services.engine.status()


@router.post("/accounts/{account_id}/reconnect", response_model=ConnectionStatus, tags=["accounts"])
async def reconnect_account(account_id: str, services: Services = Depends(get_services)) -> ConnectionStatus:
    """Reset the retry budget of an account and start a fresh session."""
    if account_id not in {a.id for a in services.engine.accounts}:
        raise HTTPException(status_code=404, detail=f"Unknown account: {account_id}")
    if not services.engine.running:
        raise HTTPException(status_code=503, detail="Sync engine is not running")
    return await services.engine.restart_account(account_id)


# ============================================================================
# Email Endpoints
# ============================================================================


async def _query(services: Services, query: SearchQuery) -> EmailListResponse:
    try:
        emails = await services.index.query(query)
    except StorageError as e:
        logger.error(f"Email query failed: {e}")
        raise HTTPException(status_code=503, detail="Email index unavailable")
    return EmailListResponse(emails=emails, count=len(emails), offset=query.offset, size=query.size)


@router.get("/emails", response_model=EmailListResponse, tags=["emails"])
async def list_emails(
    account: Optional[str] = None,
    folder: Optional[str] = None,
    category: Optional[Category] = None,
    offset: int = Query(0, ge=0),
    size: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
) -> EmailListResponse:
    query = SearchQuery(account=account, folder=folder, category=category, offset=offset, size=size)
    return await _query(services, query)


@router.get("/emails/search", response_model=EmailListResponse, tags=["emails"])
async def search_emails(
    q: str = Query(..., min_length=1),
    account: Optional[str] = None,
    folder: Optional[str] = None,
    category: Optional[Category] = None,
    offset: int = Query(0, ge=0),
    size: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
) -> EmailListResponse:
    query = SearchQuery(q=q, account=account, folder=folder, category=category, offset=offset, size=size)
    return await _query(services, query)


@router.get("/emails/categorization/status", response_model=CategoryStats, tags=["emails"])
async def categorization_status(services: Services = Depends(get_services)) -> CategoryStats:
    try:
        return await services.index.aggregate_by_category()
    except StorageError as e:
        logger.error(f"Category aggregation failed: {e}")
        raise HTTPException(status_code=503, detail="Email index unavailable")


@router.post("/emails/categorization/backfill", response_model=BackfillResponse, tags=["emails"])
async def backfill_categories(
    limit: int = Query(50, ge=1),
    services: Services = Depends(get_services),
) -> BackfillResponse:
    """Re-classify stored emails that are still Uncategorized."""
    try:
        result = await services.backfill.run(limit=min(limit, MAX_BACKFILL_BATCH))
    except StorageError as e:
        logger.error(f"Backfill failed: {e}")
        raise HTTPException(status_code=503, detail="Email index unavailable")
    return BackfillResponse(processed=result.processed, categorized=result.categorized, failed=result.failed)


@router.get("/emails/{email_id}", response_model=EmailRecord, tags=["emails"])
async def get_email(email_id: str, services: Services = Depends(get_services)) -> EmailRecord:
    try:
        record = await services.index.get(email_id)
    except StorageError as e:
        logger.error(f"Email lookup failed for {email_id}: {e}")
        raise HTTPException(status_code=503, detail="Email index unavailable")
    if record is None:
        raise HTTPException(status_code=404, detail="Email not found")
    return record


@router.post("/emails/{email_id}/suggest-reply", response_model=SuggestedReply, tags=["emails"])
async def suggest_reply(email_id: str, services: Services = Depends(get_services)) -> SuggestedReply:
    """Draft a reply to a stored email."""
    record = await get_email(email_id, services)
    try:
        # No retrieval store yet, so the draft is built from the email alone
        return await services.replies.suggest_reply(record, contexts=[])
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ReplyGenerationError as e:
        raise HTTPException(status_code=502, detail=f"Reply generation failed: {e}")


# ============================================================================
# Webhook Endpoints
# ============================================================================


@router.post("/webhooks/test", response_model=WebhookTestResponse, tags=["webhooks"])
async def test_webhooks(services: Services = Depends(get_services)) -> WebhookTestResponse:
    """Send a sample Interested event to every configured destination."""
    send_test = getattr(services.notifier, "send_test", None)
    if send_test is None:
        raise HTTPException(status_code=400, detail="Notifier does not support test delivery")

    results = await send_test()
    return WebhookTestResponse(
        results=results,
        succeeded=sum(1 for ok in results.values() if ok),
        attempted=len(results),
    )
