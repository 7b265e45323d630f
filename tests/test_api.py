"""Tests for the HTTP status and query surface."""

from __future__ import annotations

import time
from unittest.mock import AsyncMock

import httpx
import pytest
import uvicorn
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage

from fakes import FakeClassifier, FakeIndex, FakeTransport, make_account, make_record
from onebox.api import main as api_main
from onebox.api.main import create_app
from onebox.domain.models import Category
from onebox.infrastructure.classification import LLMReplySuggester
from onebox.infrastructure.factory import build_services
from onebox.infrastructure.settings import Settings
from onebox.infrastructure.webhooks import WebhookDestination, WebhookNotifier


def _services(index: FakeIndex, notifier=None, replies=None):
    settings = Settings(
        email_accounts=[make_account()],
        imap_idle_poll_seconds=0.02,
        shutdown_drain_timeout_seconds=0.5,
        _env_file=None,
    )
    return build_services(
        settings,
        transport_factory=lambda account: FakeTransport(),
        index=index,
        classifier=FakeClassifier(rules={"Interview": Category.INTERESTED}, default=Category.UNCATEGORIZED),
        notifier=notifier or WebhookNotifier([]),
        replies=replies or LLMReplySuggester(None),
    )


def _wait_connected(client: TestClient, timeout: float = 2.0) -> list[dict]:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        statuses = client.get("/api/accounts/status").json()
        if statuses and all(s["connected"] for s in statuses):
            return statuses
        time.sleep(0.02)
    raise AssertionError("accounts did not connect")


@pytest.fixture
def index() -> FakeIndex:
    index = FakeIndex()
    for i, subject in enumerate(["Interview next week", "Weekly newsletter", "Interview feedback"]):
        record = make_record(f"<api{i}@example.com>", subject=subject)
        index.records[record.id] = record
    return index


@pytest.fixture
def client(index):
    with TestClient(create_app(_services(index))) as client:
        yield client


def test_health_reports_connections(client) -> None:
    _wait_connected(client)

    body = client.get("/api/health").json()

    assert body["status"] == "healthy"
    assert body["index"] == "healthy"
    assert (body["accounts"], body["connected"]) == (1, 1)


def test_accounts_never_expose_passwords(client) -> None:
    accounts = client.get("/api/accounts").json()

    assert accounts == [
        {"id": "acct-1", "email": "sales@example.com", "imap_host": "imap.example.com", "imap_port": 993, "folder": "INBOX"}
    ]
    assert "secret" not in client.get("/api/accounts").text


def test_status_snapshot_fields(client) -> None:
    status = _wait_connected(client)[0]

    assert status["account_id"] == "acct-1"
    assert status["fatal"] is False
    assert status["reconnect_attempts"] == 0
    assert status["generation"] == 1


def test_list_search_and_get_emails(client, index) -> None:
    listing = client.get("/api/emails").json()
    assert listing["count"] == 3

    found = client.get("/api/emails/search", params={"q": "interview"}).json()
    assert {e["subject"] for e in found["emails"]} == {"Interview next week", "Interview feedback"}

    record_id = found["emails"][0]["id"]
    assert client.get(f"/api/emails/{record_id}").json()["id"] == record_id
    assert client.get("/api/emails/does-not-exist").status_code == 404


def test_filter_by_category(client, index) -> None:
    record = next(iter(index.records.values()))
    index.records[record.id] = record.model_copy(update={"category": Category.SPAM})

    body = client.get("/api/emails", params={"category": "Spam"}).json()

    assert [e["id"] for e in body["emails"]] == [record.id]


def test_backfill_then_categorization_status(client) -> None:
    result = client.post("/api/emails/categorization/backfill", params={"limit": 500}).json()

    assert result == {"processed": 3, "categorized": 2, "failed": 0}
    stats = client.get("/api/emails/categorization/status").json()
    assert stats["total"] == 3
    assert stats["by_category"] == {"Interested": 2, "Uncategorized": 1}


def test_reconnect_unknown_account_is_404(client) -> None:
    assert client.post("/api/accounts/nope/reconnect").status_code == 404


def test_reconnect_starts_new_generation(client) -> None:
    _wait_connected(client)

    status = client.post("/api/accounts/acct-1/reconnect").json()

    assert status["generation"] == 2
    assert status["reconnect_attempts"] == 0
    assert _wait_connected(client)[0]["generation"] == 2


def test_webhook_test_endpoint(index) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200)

    notifier = WebhookNotifier(
        [WebhookDestination("https://ok.example/hook")],
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    with TestClient(create_app(_services(index, notifier))) as client:
        body = client.post("/api/webhooks/test").json()

    assert body == {"results": {"https://ok.example/hook": True}, "succeeded": 1, "attempted": 1}


def test_main_applies_log_level_before_serving(monkeypatch) -> None:
    calls: list[tuple] = []
    settings = Settings(log_level="DEBUG", api_host="127.0.0.1", api_port=4321, _env_file=None)
    monkeypatch.setattr(api_main, "get_settings", lambda: settings)
    monkeypatch.setattr(api_main, "configure_logging", lambda level: calls.append(("logging", level)))
    monkeypatch.setattr(uvicorn, "run", lambda app, host, port: calls.append(("serve", host, port)))

    api_main.main()

    assert calls == [("logging", "DEBUG"), ("serve", "127.0.0.1", 4321)]


def test_suggest_reply_for_stored_email(index) -> None:
    llm = AsyncMock()
    llm.ainvoke.return_value = AIMessage(content="Happy to chat on Tuesday.")
    record_id = next(iter(index.records))

    with TestClient(create_app(_services(index, replies=LLMReplySuggester(llm)))) as client:
        response = client.post(f"/api/emails/{record_id}/suggest-reply")
        missing = client.post("/api/emails/does-not-exist/suggest-reply")

    assert response.status_code == 200
    assert response.json() == {"reply": "Happy to chat on Tuesday.", "context": [], "confidence": 0.85}
    assert missing.status_code == 404
    llm.ainvoke.assert_awaited_once()


def test_suggest_reply_without_llm_is_503(client, index) -> None:
    record_id = next(iter(index.records))

    response = client.post(f"/api/emails/{record_id}/suggest-reply")

    assert response.status_code == 503
