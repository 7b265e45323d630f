"""Tests for the Message-ID deduplication gate."""

from __future__ import annotations

import asyncio

import pytest

from fakes import FakeIndex, make_record
from onebox.application.use_cases.dedup import DeduplicationGate
from onebox.domain.errors import DedupCheckError


@pytest.mark.asyncio
async def test_new_message_id_is_admitted_and_reserved() -> None:
    gate = DeduplicationGate(FakeIndex())

    assert await gate.admit("<new@example.com>") is True
    assert gate.in_flight == 1

    gate.release("<new@example.com>")
    assert gate.in_flight == 0


@pytest.mark.asyncio
async def test_stored_message_id_is_rejected() -> None:
    index = FakeIndex()
    record = make_record("<seen@example.com>")
    index.records[record.id] = record
    gate = DeduplicationGate(index)

    assert await gate.admit("<seen@example.com>") is False
    assert gate.in_flight == 0


@pytest.mark.asyncio
async def test_concurrent_copies_admit_only_one() -> None:
    gate = DeduplicationGate(FakeIndex())

    results = await asyncio.gather(*(gate.admit("<same@example.com>") for _ in range(3)))

    assert sorted(results) == [False, False, True]


@pytest.mark.asyncio
async def test_lookup_failure_fails_closed_by_default() -> None:
    index = FakeIndex()
    index.fail_exists = True
    gate = DeduplicationGate(index)

    with pytest.raises(DedupCheckError):
        await gate.admit("<x@example.com>")
    assert gate.in_flight == 0


@pytest.mark.asyncio
async def test_lookup_failure_admits_when_fail_open() -> None:
    index = FakeIndex()
    index.fail_exists = True
    gate = DeduplicationGate(index, fail_open=True)

    assert await gate.admit("<x@example.com>") is True


@pytest.mark.asyncio
async def test_generated_ids_skip_the_lookup() -> None:
    index = FakeIndex()
    gate = DeduplicationGate(index)

    assert await gate.admit("generated-1", generated=True) is True
    assert index.exists_calls == []
