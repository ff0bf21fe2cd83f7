"""Payment relay configuration."""

from __future__ import annotations

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Environment-driven settings.

    Built once by the application factory and handed to each component;
    nothing reads the environment after startup.
    """

    redis_url: str = "redis://localhost:6379/0"
    # Seconds. Must exceed consumer_block_ms or XREADGROUP trips the read timeout
    redis_socket_timeout: float = 5.0
    redis_connect_timeout: float = 2.0

    # Processor webhook + payment-detail lookup
    stripe_webhook_secret: str = ""
    stripe_api_key: str = ""
    stripe_api_base: str = "https://api.stripe.com/v1/"
    receipt_lookup_timeout: float = 5.0
    signature_tolerance: int = 300

    # Consumed by payment-session creation in the order flow, not by this service
    stripe_success_url: str = ""
    stripe_cancel_url: str = ""

    # Idempotency claims: short while a webhook is in flight, long once published
    idempotency_prefix: str = "payrelay:webhook:seen"
    idempotency_pending_ttl: int = 600
    idempotency_ttl: int = 7 * 24 * 3600

    # Bus
    consumer_group: str = "notification-service"
    consumer_name: str = "notification-0"
    stream_maxlen: int = 10_000
    consumer_block_ms: int = 2000
    consumer_batch_size: int = 10
    stale_claim_ms: int = 60_000
    enable_consumer: bool = True

    log_level: str = "INFO"

    model_config = {"env_prefix": "PAYRELAY_", "env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _check_redis_timeouts(self) -> Settings:
        if self.redis_socket_timeout <= 0 or self.redis_connect_timeout <= 0:
            raise ValueError("redis timeouts must be positive")
        if self.redis_socket_timeout * 1000 <= self.consumer_block_ms:
            raise ValueError(
                f"redis_socket_timeout ({self.redis_socket_timeout}s) must exceed "
                f"consumer_block_ms ({self.consumer_block_ms}ms)"
            )
        return self

    @property
    def webhook_secret(self) -> str | None:
        return self.stripe_webhook_secret or None
