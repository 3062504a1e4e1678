"""PayPal REST client (orders v2) used by the verify and webhook flows."""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import requests

from billing.services.provider_http import ProviderConfigurationError, ProviderError, request_json

logger = logging.getLogger(__name__)

PAYPAL_HOSTS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}


class PayPalClient:
    provider = "paypal"

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        mode: str = "sandbox",
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = PAYPAL_HOSTS.get((mode or "sandbox").lower(), PAYPAL_HOSTS["sandbox"])
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    def _access_token(self) -> str:
        if not self.client_id or not self.client_secret:
            raise ProviderConfigurationError("PayPal credentials are not configured.")
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        data = request_json(
            self.session,
            "POST",
            f"{self.base_url}/v1/oauth2/token",
            provider=self.provider,
            operation="oauth_token",
            timeout=self.timeout,
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        token = data.get("access_token")
        if not token:
            raise ProviderError("PayPal did not return an access token.")
        # Refresh a minute early.
        self._token = token
        self._token_expires_at = time.monotonic() + max(int(data.get("expires_in") or 0) - 60, 0)
        return token

    def _headers(self, **extra: str) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }
        headers.update(extra)
        return headers

    def get_order(self, order_id: str) -> Dict[str, Any]:
        if not order_id:
            raise ValueError("order_id is required.")
        return request_json(
            self.session,
            "GET",
            f"{self.base_url}/v2/checkout/orders/{order_id}",
            provider=self.provider,
            operation="get_order",
            timeout=self.timeout,
            headers=self._headers(),
        )

    def capture_order(self, order_id: str) -> Dict[str, Any]:
        """Capture an approved order; the request id makes repeated captures safe."""

        if not order_id:
            raise ValueError("order_id is required.")
        return request_json(
            self.session,
            "POST",
            f"{self.base_url}/v2/checkout/orders/{order_id}/capture",
            provider=self.provider,
            operation="capture_order",
            timeout=self.timeout,
            headers=self._headers(**{"PayPal-Request-Id": f"capture-{order_id}"}),
            json={},
        )


def first_capture(order: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``purchase_units[0].payments.captures[0]`` or an empty dict."""

    units = order.get("purchase_units") or []
    if not units:
        return {}
    captures = ((units[0] or {}).get("payments") or {}).get("captures") or []
    return captures[0] if captures else {}


def payer_details(order: Dict[str, Any]) -> Dict[str, str]:
    payer = order.get("payer") or {}
    name = payer.get("name") or {}
    full_name = " ".join(part for part in (name.get("given_name"), name.get("surname")) if part)
    return {
        "payer_id": payer.get("payer_id") or "",
        "payer_email": payer.get("email_address") or "",
        "payer_name": full_name,
    }
