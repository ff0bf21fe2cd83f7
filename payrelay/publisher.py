"""Event publisher: one canonical event, one bus publish."""

from __future__ import annotations

import logging
from typing import Any

from payrelay.bus import RedisBus
from payrelay.errors import PublishFailed

logger = logging.getLogger(__name__)


class EventPublisher:
    """Publishes canonical events and reports transport failure as PublishFailed.

    There is no buffering or batching: the call returns only once the bus has
    accepted the entry.
    """

    def __init__(self, bus: RedisBus, *, source: str = "payrelay"):
        self._bus = bus
        self._source = source

    def publish(
        self,
        subject: str,
        payload: dict[str, Any],
        *,
        msg_id: str | None = None,
        msg_type: str | None = None,
    ) -> str:
        try:
            entry_id = self._bus.publish(
                subject,
                payload,
                msg_id=msg_id,
                msg_type=msg_type,
                source=self._source,
            )
        except PublishFailed:
            logger.error("Publish failed: subject=%s payload=%s", subject, payload)
            raise
        except Exception as exc:
            logger.error("Publish failed: subject=%s payload=%s", subject, payload, exc_info=True)
            raise PublishFailed(subject, payload, str(exc)) from exc

        logger.debug("Published %s entry=%s msg_id=%s", subject, entry_id, msg_id)
        return entry_id
