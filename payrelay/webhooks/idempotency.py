"""Webhook idempotency: Redis-backed record of processed processor events.

Security contract:
- Key pattern: {prefix}:{event_id}
- mark_if_new is a single SET NX (atomic test-and-set), never read-then-write
- A fresh claim holds "pending" with a short TTL; confirm() replaces it with
  the processed timestamp and the long TTL once payment.paid is on the bus
- release() drops a claim whose publish failed so the processor's retry is new
- If Redis is down, raise StoreUnavailable (fail-closed: never assume new)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import redis

from payrelay.errors import MalformedPayload, StoreUnavailable
from payrelay.models import IdempotencyRecord

logger = logging.getLogger(__name__)

PENDING = "pending"

_STORE_ERRORS = (redis.RedisError, OSError)


@dataclass(frozen=True)
class MarkResult:
    is_new: bool


class IdempotencyGuard:
    """Answers "seen this processor event before?" atomically."""

    def __init__(
        self,
        redis_client: redis.Redis,
        *,
        prefix: str = "payrelay:webhook:seen",
        pending_ttl: int = 600,
        ttl: int = 7 * 24 * 3600,
    ):
        self._redis = redis_client
        self._prefix = prefix
        self._pending_ttl = pending_ttl
        self._ttl = ttl

    def _key(self, event_id: str) -> str:
        if not event_id:
            raise MalformedPayload("event id is empty")
        return f"{self._prefix}:{event_id}"

    def mark_if_new(self, event_id: str) -> MarkResult:
        """Claim *event_id*. Exactly one concurrent caller sees is_new=True."""
        key = self._key(event_id)
        try:
            was_set = self._redis.set(key, PENDING, nx=True, ex=self._pending_ttl)
        except _STORE_ERRORS as exc:
            logger.warning("Idempotency store unavailable for %s", event_id, exc_info=True)
            raise StoreUnavailable(str(exc)) from exc

        if not was_set:
            logger.info("Duplicate webhook event: %s", event_id)
            return MarkResult(is_new=False)
        return MarkResult(is_new=True)

    def confirm(self, event_id: str, processed_at: float | None = None) -> IdempotencyRecord:
        """Turn a pending claim into a long-lived processed record."""
        record = IdempotencyRecord(
            event_id=event_id,
            processed_at=time.time() if processed_at is None else processed_at,
        )
        key = self._key(event_id)
        try:
            self._redis.set(key, repr(record.processed_at), ex=self._ttl)
        except _STORE_ERRORS as exc:
            raise StoreUnavailable(str(exc)) from exc
        return record

    def release(self, event_id: str) -> None:
        """Drop a claim so a retry of the same event is processed again."""
        key = self._key(event_id)
        try:
            self._redis.delete(key)
        except _STORE_ERRORS as exc:
            raise StoreUnavailable(str(exc)) from exc

    def get(self, event_id: str) -> IdempotencyRecord | None:
        """Processed record for *event_id*, or None if unseen or still pending."""
        key = self._key(event_id)
        try:
            raw = self._redis.get(key)
        except _STORE_ERRORS as exc:
            raise StoreUnavailable(str(exc)) from exc
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        if raw == PENDING:
            return None
        return IdempotencyRecord(event_id=event_id, processed_at=float(raw))
