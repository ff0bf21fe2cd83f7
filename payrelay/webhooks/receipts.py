"""Payment-detail lookup against the processor's REST API.

Used only when a checkout event carries no inline receipt. The whole call,
body included, is bounded by a deadline; callers treat any failure as
"receipt unavailable".
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

RECEIPT_UNAVAILABLE = "receipt unavailable"


class ReceiptLookup(Protocol):
    def get_receipt(self, session_id: str) -> str | None: ...


class StripeReceiptLookup:
    """Fetches the receipt URL of a checkout session's latest charge.

    ``timeout`` bounds each connect/read phase on the httpx client and also
    the call as a whole, so a server trickling bytes cannot stretch it.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.stripe.com/v1/",
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ):
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    def get_receipt(self, session_id: str) -> str | None:
        """Return the receipt URL, the session's success URL, or None.

        Raises:
            httpx.HTTPError: on timeout, connection failure or non-2xx status
            ValueError: response body is not JSON
        """
        session = self._get_json(
            f"checkout/sessions/{session_id}",
            params={"expand[]": "payment_intent.latest_charge"},
        )

        charge = _latest_charge(session)
        receipt_url = charge.get("receipt_url") if charge else None
        if receipt_url:
            return receipt_url

        logger.info("No charge receipt for session %s, using success_url", session_id)
        return session.get("success_url") or None

    def _get_json(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        deadline = time.monotonic() + self._timeout
        chunks: list[bytes] = []
        with self._client.stream("GET", path, params=params) as resp:
            resp.raise_for_status()
            for chunk in resp.iter_bytes():
                chunks.append(chunk)
                if time.monotonic() > deadline:
                    raise httpx.ReadTimeout(
                        f"{path} took longer than {self._timeout}s", request=resp.request
                    )
        data = json.loads(b"".join(chunks))
        if not isinstance(data, dict):
            raise ValueError(f"{path} returned {type(data).__name__}, expected an object")
        return data

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


def _latest_charge(session: dict[str, Any]) -> dict[str, Any] | None:
    payment_intent = session.get("payment_intent")
    if not isinstance(payment_intent, dict):
        return None
    charge = payment_intent.get("latest_charge")
    return charge if isinstance(charge, dict) else None
