"""Notification fan-out dispatcher — one envelope per recipient.

Routes inbound domain events to per-producer bus subjects:
- notification.order.created -> NEW_ORDER to every producer in the order
- inventory.lowStock          -> LOW_STOCK to the producer owning the offer

Fan-out contract:
- Recipients are published in source order, duplicates included
- A failed recipient does not stop the others; failures are collected
- Each envelope's msg_id is derived from (type, source, recipient, position)
  so a redelivered event yields the same ids
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable

from payrelay.bus import SUBJECT_LOW_STOCK, SUBJECT_ORDER_CREATED
from payrelay.errors import PublishFailed
from payrelay.models import (
    LowStockEvent,
    NotificationEnvelope,
    NotificationType,
    OrderCreatedEvent,
)
from payrelay.publisher import EventPublisher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecipientFailure:
    recipient_id: str
    subject: str
    error: str


@dataclass
class FanOutReport:
    """Outcome of one fan-out: which recipients got the envelope, which did not."""

    source_id: str
    type: NotificationType
    delivered: list[str] = field(default_factory=list)
    failed: list[RecipientFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def build_envelopes_for_order(event: OrderCreatedEvent) -> list[NotificationEnvelope]:
    summary = event.summary()
    return [
        NotificationEnvelope(
            type=NotificationType.NEW_ORDER,
            recipient_id=producer_id,
            payload=dict(summary),
            source_id=event.order_id,
            sequence=position,
        )
        for position, producer_id in enumerate(event.producer_ids)
    ]


def build_envelope_for_low_stock(event: LowStockEvent, source_id: str) -> NotificationEnvelope:
    return NotificationEnvelope(
        type=NotificationType.LOW_STOCK,
        recipient_id=event.producer_id,
        payload=event.summary(),
        source_id=source_id,
    )


class NotificationDispatcher:
    """Stateless fan-out of domain events to producer subjects."""

    def __init__(self, publisher: EventPublisher):
        self._publisher = publisher

    def handle_order_created(self, event: OrderCreatedEvent) -> FanOutReport:
        repeated = [pid for pid, n in Counter(event.producer_ids).items() if n > 1]
        if repeated:
            # Kept as-is: may be a multi-item order to one seller or an upstream bug
            logger.warning(
                "Order %s lists producers more than once: %s", event.order_id, repeated
            )
        if not event.producer_ids:
            logger.warning("Order %s has no producers to notify", event.order_id)

        report = FanOutReport(source_id=event.order_id, type=NotificationType.NEW_ORDER)
        self._emit_all(build_envelopes_for_order(event), report)
        return report

    def handle_low_stock(self, event: LowStockEvent, source_id: str) -> FanOutReport:
        """Notify the producer owning the offer.

        ``source_id`` is the inbound bus message id: each alert gets its own,
        and a redelivered alert keeps the one it had.
        """
        envelope = build_envelope_for_low_stock(event, source_id)
        report = FanOutReport(source_id=envelope.source_id, type=NotificationType.LOW_STOCK)
        self._emit_all([envelope], report)
        return report

    def _emit_all(self, envelopes: list[NotificationEnvelope], report: FanOutReport) -> None:
        for envelope in envelopes:
            try:
                self._publisher.publish(
                    envelope.subject,
                    envelope.to_message(),
                    msg_id=envelope.msg_id,
                    msg_type=envelope.type.value,
                )
            except PublishFailed as exc:
                report.failed.append(
                    RecipientFailure(
                        recipient_id=envelope.recipient_id,
                        subject=envelope.subject,
                        error=str(exc),
                    )
                )
                continue
            report.delivered.append(envelope.recipient_id)

        logger.info(
            "Fan-out %s source=%s delivered=%d failed=%d",
            report.type.value,
            report.source_id,
            len(report.delivered),
            len(report.failed),
        )
        for failure in report.failed:
            logger.error(
                "Notification not delivered: type=%s source=%s recipient=%s error=%s",
                report.type.value,
                report.source_id,
                failure.recipient_id,
                failure.error,
            )

    def routes(self) -> dict[str, Callable[[dict[str, Any], str], FanOutReport]]:
        """Subject -> handler table consumed by the bus consumer.

        Handlers take the raw payload and the inbound message id;
        pydantic.ValidationError propagates for payloads that do not match
        the event schema. Orders are identified by their orderId instead.
        """
        return {
            SUBJECT_ORDER_CREATED: lambda payload, source_id: self.handle_order_created(
                OrderCreatedEvent.model_validate(payload)
            ),
            SUBJECT_LOW_STOCK: lambda payload, source_id: self.handle_low_stock(
                LowStockEvent.model_validate(payload), source_id
            ),
        }
