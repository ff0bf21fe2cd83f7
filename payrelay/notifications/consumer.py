"""Notification bus consumer: reads domain events and runs the fan-out.

Runs as a background thread, reading the subjects in the routing table via
this service's consumer group. Each entry is handled independently:
- no route or unreadable payload: logged and acked (poison message)
- fan-out finished, even with per-recipient failures: acked
- unexpected handler error: left pending, reclaimed after stale_claim_ms
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from pydantic import ValidationError

from payrelay.bus import BusMessage, RedisBus

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any], str], Any]


class NotificationConsumer:
    """Background consumer that dispatches bus entries through a routing table."""

    def __init__(
        self,
        bus: RedisBus,
        routes: dict[str, Handler],
        *,
        consumer_name: str = "notification-0",
        batch_size: int = 10,
        block_ms: int = 2000,
        stale_claim_ms: int = 60_000,
    ):
        self._bus = bus
        self._routes = dict(routes)
        self._consumer_name = consumer_name
        self._batch_size = batch_size
        self._block_ms = block_ms
        self._stale_claim_ms = stale_claim_ms
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def subjects(self) -> list[str]:
        return list(self._routes)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._bus.ensure_groups(self.subjects)
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._poll_loop, daemon=True, name="notification-consumer",
        )
        self._thread.start()
        logger.info("Notification consumer started: %s on %s", self._consumer_name, self.subjects)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Notification consumer stopped")

    def poll_once(self) -> int:
        """Claim stale entries, read one batch, process everything. Returns count."""
        messages: list[BusMessage] = []
        for subject in self.subjects:
            messages.extend(
                self._bus.claim_stale(
                    subject, self._consumer_name,
                    min_idle_ms=self._stale_claim_ms, count=self._batch_size,
                )
            )
        messages.extend(
            self._bus.read(
                self.subjects, self._consumer_name,
                count=self._batch_size, block_ms=self._block_ms,
            )
        )
        self.process_batch(messages)
        return len(messages)

    def _poll_loop(self) -> None:
        while not self._stop.is_set():
            try:
                if not self.poll_once():
                    self._stop.wait(0.5)
            except Exception:
                logger.exception("Notification consumer poll error")
                self._stop.wait(2)

    def process_batch(self, messages: list[BusMessage]) -> None:
        for message in messages:
            self._process(message)

    def _process(self, message: BusMessage) -> None:
        handler = self._routes.get(message.subject)
        if handler is None:
            logger.warning("No handler for subject %s, dropping %s", message.subject, message.entry_id)
            self._bus.ack(message)
            return

        if message.payload is None:
            logger.error("Unreadable payload on %s entry=%s", message.subject, message.entry_id)
            self._bus.ack(message)
            return

        try:
            # msg_id is set by the publisher; the entry id covers bare XADDs
            handler(message.payload, message.msg_id or message.entry_id)
        except ValidationError as exc:
            logger.error(
                "Invalid %s payload entry=%s: %s",
                message.subject, message.entry_id, exc.errors(include_url=False),
            )
            self._bus.ack(message)
            return
        except Exception:
            logger.exception(
                "Handler for %s failed, leaving entry=%s pending", message.subject, message.entry_id
            )
            return

        self._bus.ack(message)
