"""Tests for the webhook idempotency guard."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
import redis

from payrelay.errors import MalformedPayload, StoreUnavailable
from payrelay.webhooks.idempotency import PENDING, IdempotencyGuard


def _guard(r) -> IdempotencyGuard:
    return IdempotencyGuard(r, prefix="test:seen", pending_ttl=600, ttl=86400)


def test_new_event_is_new(redis_client):
    assert _guard(redis_client).mark_if_new("evt_1").is_new is True
    redis_client.set.assert_called_once_with("test:seen:evt_1", PENDING, nx=True, ex=600)


def test_seen_event_is_not_new(redis_client):
    guard = _guard(redis_client)
    guard.mark_if_new("evt_1")
    assert guard.mark_if_new("evt_1").is_new is False


def test_distinct_events_are_independent(redis_client):
    guard = _guard(redis_client)
    assert guard.mark_if_new("evt_1").is_new is True
    assert guard.mark_if_new("evt_2").is_new is True


def test_redis_down_raises_store_unavailable():
    """Store failure -> fail closed, never treat the event as new."""
    r = MagicMock()
    r.set.side_effect = redis.ConnectionError("connection refused")
    with pytest.raises(StoreUnavailable):
        _guard(r).mark_if_new("evt_1")


def test_empty_event_id_rejected(redis_client):
    with pytest.raises(MalformedPayload):
        _guard(redis_client).mark_if_new("")
    redis_client.set.assert_not_called()


def test_concurrent_duplicates_exactly_one_new(redis_client):
    guard = _guard(redis_client)
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: guard.mark_if_new("evt_race").is_new, range(8)))
    assert results.count(True) == 1
    assert results.count(False) == 7


def test_confirm_writes_record_with_long_ttl(redis_client):
    guard = _guard(redis_client)
    guard.mark_if_new("evt_1")
    record = guard.confirm("evt_1", processed_at=1700000000.5)

    assert record.event_id == "evt_1"
    assert record.processed_at == 1700000000.5
    assert redis_client.set.call_args[1]["ex"] == 86400
    assert guard.get("evt_1") == record
    # Still a duplicate after confirmation
    assert guard.mark_if_new("evt_1").is_new is False


def test_pending_claim_has_no_record(redis_client):
    guard = _guard(redis_client)
    guard.mark_if_new("evt_1")
    assert guard.get("evt_1") is None


def test_release_allows_retry(redis_client):
    guard = _guard(redis_client)
    guard.mark_if_new("evt_1")
    guard.release("evt_1")
    assert guard.mark_if_new("evt_1").is_new is True


def test_confirm_store_down():
    r = MagicMock()
    r.set.side_effect = redis.TimeoutError("timeout")
    with pytest.raises(StoreUnavailable):
        _guard(r).confirm("evt_1")


def test_release_store_down():
    r = MagicMock()
    r.delete.side_effect = redis.ConnectionError("down")
    with pytest.raises(StoreUnavailable):
        _guard(r).release("evt_1")
