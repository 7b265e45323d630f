"""Tests for the SQLite durable index."""

from __future__ import annotations

from datetime import timedelta

import pytest

from fakes import BASE_DATE, make_record
from onebox.domain.errors import DuplicateRecordError, StorageError
from onebox.domain.models import Category, SearchQuery
from onebox.infrastructure.stores import SQLiteEmailIndex


@pytest.fixture
def db(tmp_path) -> SQLiteEmailIndex:
    return SQLiteEmailIndex(tmp_path / "emails.db")


@pytest.mark.asyncio
async def test_insert_then_lookup(db) -> None:
    record = make_record("<one@example.com>", cc=["c@example.com"], references=["<zero@example.com>"])

    await db.insert(record)

    assert await db.exists("<one@example.com>") is True
    assert await db.exists("<other@example.com>") is False
    stored = await db.get(record.id)
    assert stored.message_id == "<one@example.com>"
    assert stored.cc == ["c@example.com"]
    assert stored.references == ["<zero@example.com>"]
    assert stored.date == BASE_DATE
    assert stored.category == Category.UNCATEGORIZED


@pytest.mark.asyncio
async def test_duplicate_message_id_is_rejected(db) -> None:
    await db.insert(make_record("<dup@example.com>"))

    with pytest.raises(DuplicateRecordError):
        await db.insert(make_record("<dup@example.com>"))


@pytest.mark.asyncio
async def test_update_category_and_fields(db) -> None:
    record = make_record("<u@example.com>")
    await db.insert(record)

    await db.update_category(record.id, Category.MEETING_BOOKED)
    await db.update_fields(record.id, {"subject": "Updated"})

    stored = await db.get(record.id)
    assert stored.category == Category.MEETING_BOOKED
    assert stored.subject == "Updated"


@pytest.mark.asyncio
async def test_update_rejects_unknown_field_and_missing_record(db) -> None:
    record = make_record("<u@example.com>")
    await db.insert(record)

    with pytest.raises(StorageError):
        await db.update_fields(record.id, {"nonsense": 1})
    with pytest.raises(StorageError):
        await db.update_category("missing-id", Category.SPAM)


@pytest.mark.asyncio
async def test_query_filters_and_orders_by_date(db) -> None:
    await db.insert(make_record("<a@example.com>", subject="Interview on Monday", date=BASE_DATE))
    await db.insert(
        make_record("<b@example.com>", subject="Interview follow-up", date=BASE_DATE + timedelta(days=1))
    )
    await db.insert(make_record("<c@example.com>", subject="Newsletter", account_id="acct-2"))

    results = await db.query(SearchQuery(q="interview"))
    assert [r.message_id for r in results] == ["<b@example.com>", "<a@example.com>"]

    by_account = await db.query(SearchQuery(account="acct-2"))
    assert [r.message_id for r in by_account] == ["<c@example.com>"]

    paged = await db.query(SearchQuery(q="interview", offset=1, size=1))
    assert [r.message_id for r in paged] == ["<a@example.com>"]


@pytest.mark.asyncio
async def test_aggregate_and_find_uncategorized(db) -> None:
    first = make_record("<1@example.com>")
    second = make_record("<2@example.com>")
    await db.insert(first)
    await db.insert(second)
    await db.update_category(first.id, Category.INTERESTED)

    stats = await db.aggregate_by_category()
    assert stats.total == 2
    assert stats.by_category == {"Interested": 1, "Uncategorized": 1}

    pending = await db.find_uncategorized()
    assert [r.id for r in pending] == [second.id]


@pytest.mark.asyncio
async def test_not_null_violation_is_not_reported_as_duplicate(db) -> None:
    record = make_record("<nn@example.com>")
    await db.insert(record)

    with pytest.raises(StorageError) as exc_info:
        await db.update_fields(record.id, {"subject": None})

    assert not isinstance(exc_info.value, DuplicateRecordError)
    assert (await db.get(record.id)).subject == "Subject"


@pytest.mark.asyncio
async def test_search_treats_like_wildcards_literally(db) -> None:
    await db.insert(make_record("<pct@example.com>", subject="Save 100% today"))
    await db.insert(make_record("<num@example.com>", subject="Save 1000 today", date=BASE_DATE + timedelta(minutes=1)))
    await db.insert(make_record("<us@example.com>", subject="ticket a_b", date=BASE_DATE + timedelta(minutes=2)))
    await db.insert(make_record("<ax@example.com>", subject="ticket axb", date=BASE_DATE + timedelta(minutes=3)))

    percent = await db.query(SearchQuery(q="0%"))
    underscore = await db.query(SearchQuery(q="a_b"))

    assert [r.message_id for r in percent] == ["<pct@example.com>"]
    assert [r.message_id for r in underscore] == ["<us@example.com>"]


@pytest.mark.asyncio
async def test_ping(db) -> None:
    assert await db.ping() is True


def test_unusable_path_raises_storage_error(tmp_path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")

    with pytest.raises(StorageError):
        SQLiteEmailIndex(blocker / "emails.db")
