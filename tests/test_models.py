"""Tests for domain records and settings."""

from __future__ import annotations

import dataclasses

import pytest
from pydantic import ValidationError

from payrelay.config import Settings
from payrelay.errors import MissingOrderCorrelation, PublishFailed
from payrelay.models import (
    LowStockEvent,
    NotificationEnvelope,
    NotificationType,
    OrderCreatedEvent,
    PaymentConfirmed,
)


class TestPaymentConfirmed:

    def test_payload_keys(self):
        confirmation = PaymentConfirmed("cs_1", "order-1", "https://receipts/abc")
        assert confirmation.to_payload() == {
            "stripePaymentId": "cs_1",
            "orderId": "order-1",
            "receiptUrl": "https://receipts/abc",
        }

    def test_empty_order_id_rejected(self):
        with pytest.raises(MissingOrderCorrelation):
            PaymentConfirmed("cs_1", "", "https://receipts/abc")

    def test_immutable(self):
        confirmation = PaymentConfirmed("cs_1", "order-1", "r")
        with pytest.raises(dataclasses.FrozenInstanceError):
            confirmation.order_id = "order-2"


class TestNotificationEnvelope:

    def test_subject_and_message(self):
        envelope = NotificationEnvelope(
            type=NotificationType.LOW_STOCK,
            recipient_id="p7",
            payload={"productOfferId": "o1"},
            source_id="src",
        )
        assert envelope.subject == "notification.producer.p7"
        assert envelope.to_message() == {"type": "LOW_STOCK", "productOfferId": "o1"}

    def test_msg_id_depends_on_recipient_and_position(self):
        base = dict(type=NotificationType.NEW_ORDER, payload={}, source_id="order-1")
        a = NotificationEnvelope(recipient_id="p1", sequence=0, **base)
        b = NotificationEnvelope(recipient_id="p2", sequence=0, **base)
        c = NotificationEnvelope(recipient_id="p1", sequence=1, **base)
        assert len({a.msg_id, b.msg_id, c.msg_id}) == 3
        assert a.msg_id == NotificationEnvelope(recipient_id="p1", sequence=0, **base).msg_id


class TestInboundEvents:

    def test_order_created_aliases(self):
        event = OrderCreatedEvent.model_validate({
            "orderId": "o1",
            "producerIds": ["p1"],
            "clientName": "Ada",
            "totalAmount": 10,
            "productCount": 1,
            "orderDate": "2026-10-19",
        })
        assert event.producer_ids == ["p1"]
        assert event.address is None
        assert event.summary()["totalAmount"] == 10

    def test_order_requires_order_id(self):
        with pytest.raises(ValidationError):
            OrderCreatedEvent.model_validate({
                "orderId": "",
                "producerIds": [],
                "clientName": "Ada",
                "totalAmount": 1,
                "productCount": 1,
                "orderDate": "2026-10-19",
            })

    def test_order_rejects_empty_producer_id(self):
        with pytest.raises(ValidationError):
            OrderCreatedEvent.model_validate({
                "orderId": "o1",
                "producerIds": ["p1", ""],
                "clientName": "Ada",
                "totalAmount": 1,
                "productCount": 1,
                "orderDate": "2026-10-19",
            })

    def test_low_stock_requires_producer(self):
        with pytest.raises(ValidationError):
            LowStockEvent.model_validate({
                "producerId": "",
                "productOfferId": "offer-3",
                "available_quantity": 2,
                "minimum_threshold": 5,
            })


def test_publish_failed_keeps_context():
    exc = PublishFailed("payment.paid", {"orderId": "o1"}, "timeout")
    assert exc.subject == "payment.paid"
    assert exc.payload == {"orderId": "o1"}
    assert "timeout" in str(exc)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("PAYRELAY_STRIPE_WEBHOOK_SECRET", "whsec_env")
    monkeypatch.setenv("PAYRELAY_RECEIPT_LOOKUP_TIMEOUT", "1.5")
    settings = Settings(_env_file=None)
    assert settings.webhook_secret == "whsec_env"
    assert settings.receipt_lookup_timeout == 1.5


def test_settings_empty_secret_is_absent():
    assert Settings(stripe_webhook_secret="", _env_file=None).webhook_secret is None


def test_settings_redis_timeouts_from_env(monkeypatch):
    monkeypatch.setenv("PAYRELAY_REDIS_SOCKET_TIMEOUT", "4")
    settings = Settings(_env_file=None)
    assert settings.redis_socket_timeout == 4.0
    assert settings.redis_connect_timeout > 0


def test_settings_socket_timeout_must_exceed_consumer_block():
    with pytest.raises(ValidationError):
        Settings(redis_socket_timeout=2.0, consumer_block_ms=2000, _env_file=None)


def test_settings_rejects_unbounded_redis_timeout():
    with pytest.raises(ValidationError):
        Settings(redis_connect_timeout=0, _env_file=None)
