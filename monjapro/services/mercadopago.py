"""Mercado Pago API client.

Payment lookups feed the webhook reconciliation engine; preference creation
feeds the checkout flow. Notifications are never trusted for payment state:
the engine always asks the provider through ``get_payment``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from monjapro import metrics
from monjapro.config import Settings, settings
from monjapro.schemas.billing import PaymentDetails

logger = logging.getLogger(__name__)


class MercadoPagoError(Exception):
    """Base exception for Mercado Pago client errors."""

    pass


class PaymentNotFoundError(MercadoPagoError):
    """The payment id does not exist at the provider. Terminal."""

    pass


class ProviderTransientError(MercadoPagoError):
    """Timeouts, transport failures, 429 and 5xx. Safe to retry later."""

    pass


class MercadoPagoClient:
    """HTTP client for the Mercado Pago REST API."""

    def __init__(
        self,
        access_token: str | None,
        base_url: str = "https://api.mercadopago.com",
        timeout: float = 5.0,
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "MercadoPagoClient":
        return cls(
            config.mercadopago_access_token,
            base_url=config.mercadopago_api_base,
            timeout=config.mercadopago_timeout_seconds,
        )

    def _headers(self, extra: dict | None = None) -> dict[str, str]:
        if not self.access_token:
            raise MercadoPagoError("Mercado Pago access token is not configured")
        headers = {"Authorization": f"Bearer {self.access_token}"}
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        path: str,
        json_data: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """Send a request, translating transport failures to ProviderTransientError.

        The response is returned as-is; callers interpret the status code.
        """
        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout, headers=self._headers(headers)) as client:
                return client.request(method, url, json=json_data)
        except httpx.TimeoutException as e:
            logger.warning("Mercado Pago timeout: %s %s", method, path)
            raise ProviderTransientError(
                f"Timeout after {self.timeout}s calling Mercado Pago {method} {path}"
            ) from e
        except httpx.RequestError as e:
            logger.warning("Mercado Pago request error: %s %s: %s", method, path, e)
            raise ProviderTransientError(f"Request error: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, resource: str) -> None:
        status = response.status_code
        if response.is_success:
            return
        if status == 429 or status >= 500:
            raise ProviderTransientError(f"Mercado Pago returned {status} for {resource}")
        logger.error(
            "Mercado Pago API error for %s: %s - %s", resource, status, response.text
        )
        raise MercadoPagoError(f"API error: {status} for {resource}")

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    def get_payment(self, payment_id: str) -> PaymentDetails:
        """Fetch the current authoritative state of a payment.

        Raises:
            PaymentNotFoundError: The provider has no such payment.
            ProviderTransientError: Timeout, network failure, 429 or 5xx.
            MercadoPagoError: Any other failure, including malformed payloads.
        """
        started = time.monotonic()
        resource = f"payment {payment_id}"
        result = "error"
        try:
            response = self._request("GET", f"/v1/payments/{quote(str(payment_id), safe='')}")
            if response.status_code == 404:
                result = "not_found"
                raise PaymentNotFoundError(f"Payment {payment_id} not found at Mercado Pago")
            self._raise_for_status(response, resource)
            try:
                details = PaymentDetails.from_api(response.json())
            except (ValueError, ValidationError) as e:
                raise MercadoPagoError(f"Malformed payload for {resource}: {e}") from e
            result = "ok"
            return details
        except ProviderTransientError:
            result = "transient"
            raise
        finally:
            metrics.observe_fetch(result, time.monotonic() - started)

    # -------------------------------------------------------------------------
    # Checkout preferences
    # -------------------------------------------------------------------------

    def create_preference(
        self, body: dict[str, Any], idempotency_key: str | None = None
    ) -> dict[str, Any]:
        """Create a checkout preference.

        Returns:
            Dict with ``id``, ``init_point`` and ``sandbox_init_point``.
        """
        headers = {"X-Idempotency-Key": idempotency_key} if idempotency_key else None
        response = self._request("POST", "/checkout/preferences", json_data=body, headers=headers)
        self._raise_for_status(response, "preference")
        try:
            data = response.json()
        except ValueError as e:
            raise MercadoPagoError("Malformed preference response") from e
        if not data.get("id") or not data.get("init_point"):
            raise MercadoPagoError("Preference response is missing id or init_point")
        return data


def parse_signature_header(x_signature: str) -> dict[str, str]:
    parts: dict[str, str] = {}
    for part in x_signature.split(","):
        if "=" in part:
            key, value = part.split("=", 1)
            parts[key.strip()] = value.strip()
    return parts


def verify_webhook_signature(
    x_signature: str | None,
    x_request_id: str | None,
    data_id: str | None,
    secret: str,
) -> bool:
    """Verify the ``x-signature`` header Mercado Pago attaches to notifications.

    The signed manifest is ``id:{data.id};request-id:{x-request-id};ts:{ts};``
    hashed with HMAC-SHA256 using the webhook secret, compared with ``v1``.
    """
    if not x_signature or not x_request_id:
        return False
    parts = parse_signature_header(x_signature)
    ts = parts.get("ts")
    v1 = parts.get("v1")
    if not ts or not v1:
        return False
    manifest = f"id:{(data_id or '').lower()};request-id:{x_request_id};ts:{ts};"
    expected = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, v1)
