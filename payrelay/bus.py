"""Redis Streams message bus — publish + consume over named subjects.

Each subject is one stream. Every consuming service reads through its own
consumer group, so each group receives every message published to the
subjects it follows. Entries are added via XADD with an auto-generated
stream ID (*).

Unlike a fire-and-forget bus, publish() raises PublishFailed when Redis does
not accept the entry: callers decide whether a lost message is acceptable.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any

import redis

from payrelay.errors import PublishFailed
from payrelay.models import PRODUCER_SUBJECT_PREFIX, producer_subject

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Subjects
# ---------------------------------------------------------------------------

SUBJECT_PAYMENT_PAID = "payment.paid"
SUBJECT_ORDER_CREATED = "notification.order.created"
SUBJECT_LOW_STOCK = "inventory.lowStock"

__all__ = [
    "BusMessage",
    "PRODUCER_SUBJECT_PREFIX",
    "RedisBus",
    "SUBJECT_LOW_STOCK",
    "SUBJECT_ORDER_CREATED",
    "SUBJECT_PAYMENT_PAID",
    "producer_subject",
]

_BUS_ERRORS = (redis.RedisError, OSError)


@dataclass(frozen=True)
class BusMessage:
    """A decoded stream entry. ``payload`` is None when it was not valid JSON."""

    subject: str
    entry_id: str
    msg_id: str
    msg_type: str
    source: str
    payload: dict[str, Any] | None

    @classmethod
    def from_entry(cls, subject: str, entry_id: str, fields: dict[str, str]) -> BusMessage:
        try:
            payload = json.loads(fields.get("payload", ""))
        except (json.JSONDecodeError, TypeError):
            payload = None
        if not isinstance(payload, dict):
            payload = None
        return cls(
            subject=subject,
            entry_id=entry_id,
            msg_id=fields.get("msg_id", ""),
            msg_type=fields.get("msg_type", ""),
            source=fields.get("source", ""),
            payload=payload,
        )


class RedisBus:
    """Bus client over an injected Redis connection."""

    def __init__(
        self,
        redis_client: redis.Redis,
        *,
        group: str = "notification-service",
        maxlen: int = 10_000,
    ):
        self._redis = redis_client
        self._group = group
        self._maxlen = maxlen

    @property
    def group(self) -> str:
        return self._group

    # -----------------------------------------------------------------------
    # Publishing
    # -----------------------------------------------------------------------

    def publish(
        self,
        subject: str,
        payload: dict[str, Any],
        *,
        msg_id: str | None = None,
        msg_type: str | None = None,
        source: str = "",
    ) -> str:
        """Append a message to *subject*. Returns the stream entry ID.

        Raises:
            PublishFailed: payload not serializable or Redis rejected the XADD
        """
        if msg_id is None:
            msg_id = uuid.uuid4().hex[:16]

        try:
            encoded = json.dumps(payload, default=str)
        except (TypeError, ValueError) as exc:
            raise PublishFailed(subject, payload, f"unserializable payload: {exc}") from exc

        entry = {
            "msg_id": msg_id,
            "msg_type": msg_type or subject,
            "source": source,
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S+00:00", time.gmtime()),
            "payload": encoded,
        }

        try:
            return self._redis.xadd(subject, entry, maxlen=self._maxlen, approximate=True)
        except _BUS_ERRORS as exc:
            raise PublishFailed(subject, payload, str(exc)) from exc

    # -----------------------------------------------------------------------
    # Consumer group management
    # -----------------------------------------------------------------------

    def ensure_groups(self, subjects: list[str]) -> None:
        """Create this bus's consumer group on each subject (idempotent).

        Uses ``mkstream=True`` so that streams exist even before the first
        publish. ``id="$"`` starts a new group at the tail of the stream.
        """
        for subject in subjects:
            try:
                self._redis.xgroup_create(subject, self._group, id="$", mkstream=True)
                logger.info("Consumer group '%s' created on %s", self._group, subject)
            except redis.ResponseError as exc:
                if "BUSYGROUP" not in str(exc):
                    raise

    # -----------------------------------------------------------------------
    # Consuming
    # -----------------------------------------------------------------------

    def read(
        self,
        subjects: list[str],
        consumer_name: str,
        *,
        count: int = 10,
        block_ms: int = 2000,
    ) -> list[BusMessage]:
        """Read new entries for this group from several subjects at once."""
        result = self._redis.xreadgroup(
            self._group,
            consumer_name,
            {s: ">" for s in subjects},
            count=count,
            block=block_ms,
        )
        messages = []
        for subject, entries in result or []:
            for entry_id, fields in entries:
                messages.append(BusMessage.from_entry(subject, entry_id, fields))
        return messages

    def ack(self, message: BusMessage) -> int:
        return self._redis.xack(message.subject, self._group, message.entry_id)

    def claim_stale(
        self,
        subject: str,
        consumer_name: str,
        *,
        min_idle_ms: int = 60_000,
        count: int = 10,
    ) -> list[BusMessage]:
        """Reclaim entries another consumer read but never acknowledged."""
        # XAUTOCLAIM returns (next_start_id, [(entry_id, fields), ...], deleted_ids)
        response = self._redis.xautoclaim(
            subject,
            self._group,
            consumer_name,
            min_idle_time=min_idle_ms,
            count=count,
        )
        entries = response[1] if response else []
        if entries:
            logger.info(
                "Claimed %d stale messages from %s (idle > %dms)",
                len(entries), subject, min_idle_ms,
            )
        return [
            BusMessage.from_entry(subject, entry_id, fields)
            for entry_id, fields in entries
            if fields
        ]

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def ping(self) -> bool:
        try:
            return bool(self._redis.ping())
        except _BUS_ERRORS:
            return False

    def close(self) -> None:
        self._redis.close()
