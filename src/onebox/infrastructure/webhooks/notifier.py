"""Webhook fanout for Interested emails."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

import httpx
from loguru import logger

from onebox.application.ports.notifier import FanoutResult
from onebox.domain.models import EmailRecord
from onebox.infrastructure.settings import Settings

MAX_BODY_CHARS = 300
MAX_RECIPIENTS = 5


@dataclass(frozen=True)
class WebhookDestination:
    """A single notification target."""

    url: str
    kind: Literal["slack", "generic"] = "generic"


class WebhookNotifier:
    """Delivers a sanitized summary to every destination independently."""

    def __init__(
        self,
        destinations: list[WebhookDestination],
        base_url: str = "http://localhost:3000",
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.destinations = destinations
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def email_url(self, record: EmailRecord) -> str:
        return f"{self.base_url}/#email-{record.id}"

    def sanitized(self, record: EmailRecord) -> dict[str, Any]:
        """Summary safe to post: no HTML, trimmed recipients and body."""
        email: dict[str, Any] = {
            "id": record.id,
            "accountId": record.account_id,
            "folder": record.folder,
            "subject": record.subject,
            "from": record.sender,
            "to": record.to[:MAX_RECIPIENTS],
            "date": record.date.isoformat(),
            "category": record.category.value,
            "messageId": record.message_id,
            "body": (record.body or "")[:MAX_BODY_CHARS],
        }
        if record.cc:
            email["cc"] = record.cc[:MAX_RECIPIENTS]
        return email

    def generic_payload(self, record: EmailRecord) -> dict[str, Any]:
        return {
            "event": "InterestedLead",
            "email": self.sanitized(record),
            "emailUrl": self.email_url(record),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def slack_payload(self, record: EmailRecord) -> dict[str, Any]:
        return {
            "text": "New Interested Lead!",
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": "New Interested Lead", "emoji": True},
                },
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*From:*\n{record.sender}"},
                        {"type": "mrkdwn", "text": f"*Subject:*\n{record.subject}"},
                    ],
                },
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": (record.body or "")[:MAX_BODY_CHARS] or "_(empty)_"},
                },
                {
                    "type": "actions",
                    "elements": [
                        {
                            "type": "button",
                            "text": {"type": "plain_text", "text": "View Email"},
                            "url": self.email_url(record),
                            "style": "primary",
                        }
                    ],
                },
                {"type": "divider"},
            ],
        }

    async def _post(self, url: str, payload: dict[str, Any]) -> bool:
        """POST once; False on any failure. Never raises."""
        try:
            response = await self.client.post(url, json=payload, timeout=self.timeout)
        except httpx.TimeoutException:
            logger.error(f"Webhook timeout for {url}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"Error sending webhook to {url}: {e}")
            return False

        if response.status_code == 429:
            logger.warning(f"Webhook rate limited for {url}. Skipping.")
            return False
        if response.is_error:
            logger.error(f"Webhook {url} returned HTTP {response.status_code}: {response.text[:200]}")
            return False
        return True

    async def _deliver(self, destination: WebhookDestination, record: EmailRecord) -> bool:
        payload = self.slack_payload(record) if destination.kind == "slack" else self.generic_payload(record)
        try:
            return await self._post(destination.url, payload)
        except Exception as e:
            logger.exception(f"Unexpected webhook failure for {destination.url}: {e}")
            return False

    async def notify_interested(self, record: EmailRecord) -> FanoutResult:
        if not self.destinations:
            logger.debug("No webhook destinations configured")
            return FanoutResult()

        logger.info(f"Triggering {len(self.destinations)} webhook(s) for Interested email: {record.subject[:50]}")
        results = await asyncio.gather(*(self._deliver(d, record) for d in self.destinations))
        result = FanoutResult(attempted=len(results), succeeded=sum(1 for ok in results if ok))
        logger.info(f"Webhooks triggered ({result.succeeded}/{result.attempted})")
        return result

    async def send_test(self) -> dict[str, bool]:
        """Post a test message to every destination."""
        results: dict[str, bool] = {}
        for destination in self.destinations:
            if destination.kind == "slack":
                payload: dict[str, Any] = {"text": "Test message from Onebox"}
            else:
                payload = {"event": "test", "message": "Test webhook from Onebox"}
            results[destination.url] = await self._post(destination.url, payload)
        return results


def destinations_from_settings(settings: Settings) -> list[WebhookDestination]:
    """Slack first, then generic and interested URLs without repeats."""
    destinations: list[WebhookDestination] = []
    seen: set[str] = set()
    if settings.webhook_slack_url:
        destinations.append(WebhookDestination(settings.webhook_slack_url, kind="slack"))
        seen.add(settings.webhook_slack_url)
    for url in [settings.webhook_generic_url, *settings.webhook_interested_urls]:
        if url and url not in seen:
            destinations.append(WebhookDestination(url))
            seen.add(url)
    return destinations


def create_notifier(settings: Settings) -> WebhookNotifier:
    return WebhookNotifier(
        destinations_from_settings(settings),
        base_url=settings.base_url,
        timeout=settings.webhook_timeout_seconds,
    )
