"""Domain records passed between the relay components.

Internal records are frozen dataclasses. Payloads arriving from other
services over the bus are parsed with pydantic models using the camelCase
names the upstream services emit.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from typing import Annotated, Any, Union

from pydantic import BaseModel, ConfigDict, Field

from payrelay.errors import MissingOrderCorrelation

PRODUCER_SUBJECT_PREFIX = "notification.producer."


def producer_subject(recipient_id: str) -> str:
    """Bus subject a single producer listens on."""
    return f"{PRODUCER_SUBJECT_PREFIX}{recipient_id}"


def digest_key(*parts: Any) -> str:
    """Deterministic 16-char key for a tuple of values."""
    canonical = json.dumps(list(parts), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()[:16]


# ── Inbound webhook ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class InboundWebhookRequest:
    """Raw webhook as received over HTTP. Discarded after processing."""

    body: bytes
    signature: str | None
    received_at: float


@dataclass(frozen=True)
class CheckoutCompleted:
    """A verified ``checkout.session.completed`` processor event."""

    event_id: str
    kind: str
    session_id: str
    order_id: str | None = None
    receipt_url: str | None = None
    payment_intent_id: str | None = None
    success_url: str | None = None


@dataclass(frozen=True)
class IgnoredEvent:
    """A verified processor event of a kind this relay does not handle."""

    event_id: str
    kind: str


TrustedProcessorEvent = Union[CheckoutCompleted, IgnoredEvent]


# ── Canonical events ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class PaymentConfirmed:
    """Canonical ``payment.paid`` record."""

    payment_session_id: str
    order_id: str
    receipt_url: str

    def __post_init__(self) -> None:
        if not self.order_id:
            raise MissingOrderCorrelation(self.payment_session_id)

    def to_payload(self) -> dict[str, str]:
        return {
            "stripePaymentId": self.payment_session_id,
            "orderId": self.order_id,
            "receiptUrl": self.receipt_url,
        }


@dataclass(frozen=True)
class IdempotencyRecord:
    event_id: str
    processed_at: float


# ── Notifications ─────────────────────────────────────────────────────────


class NotificationType(str, enum.Enum):
    NEW_ORDER = "NEW_ORDER"
    LOW_STOCK = "LOW_STOCK"


@dataclass(frozen=True)
class NotificationEnvelope:
    """One notification for one recipient.

    ``source_id`` identifies the source event and ``sequence`` the position
    of the recipient in that event's list; together they make ``msg_id``
    stable across redeliveries so consumers can drop duplicates.
    """

    type: NotificationType
    recipient_id: str
    payload: dict[str, Any]
    source_id: str
    sequence: int = 0

    @property
    def subject(self) -> str:
        return producer_subject(self.recipient_id)

    @property
    def msg_id(self) -> str:
        return digest_key(self.type.value, self.source_id, self.recipient_id, self.sequence)

    def to_message(self) -> dict[str, Any]:
        return {"type": self.type.value, **self.payload}


class OrderCreatedEvent(BaseModel):
    """Payload of ``notification.order.created``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    order_id: str = Field(alias="orderId", min_length=1)
    producer_ids: list[Annotated[str, Field(min_length=1)]] = Field(alias="producerIds")
    client_name: str = Field(alias="clientName")
    address: str | None = None
    total_amount: int | float = Field(alias="totalAmount")
    product_count: int = Field(alias="productCount")
    order_date: str = Field(alias="orderDate")

    def summary(self) -> dict[str, Any]:
        """Order fields every notified producer receives."""
        data: dict[str, Any] = {
            "orderId": self.order_id,
            "clientName": self.client_name,
            "totalAmount": self.total_amount,
            "productCount": self.product_count,
            "orderDate": self.order_date,
        }
        if self.address is not None:
            data["address"] = self.address
        return data


class LowStockEvent(BaseModel):
    """Payload of ``inventory.lowStock``.

    Repeated alerts for the same offer can carry identical fields, so the
    payload is not an identity; the bus message id is.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    producer_id: str = Field(alias="producerId", min_length=1)
    product_offer_id: str = Field(alias="productOfferId")
    available_quantity: int | float
    minimum_threshold: int | float

    def summary(self) -> dict[str, Any]:
        return {
            "productOfferId": self.product_offer_id,
            "available_quantity": self.available_quantity,
            "minimum_threshold": self.minimum_threshold,
        }
