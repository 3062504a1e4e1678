"""Viva.com smart checkout client."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from billing.services.provider_http import ProviderConfigurationError, ProviderError, request_json

logger = logging.getLogger(__name__)

# Order StateId values returned by /checkout/v2/orders/{orderCode}.
VIVA_STATE_PENDING = 0
VIVA_STATE_EXPIRED = 1
VIVA_STATE_CANCELED = 2
VIVA_STATE_PAID = 3

VIVA_STATE_NAMES = {
    VIVA_STATE_PENDING: "pending",
    VIVA_STATE_EXPIRED: "expired",
    VIVA_STATE_CANCELED: "canceled",
    VIVA_STATE_PAID: "completed",
}

# Webhook EventTypeId values.
VIVA_EVENT_TRANSACTION_PAYMENT_CREATED = 1796
VIVA_EVENT_TRANSACTION_FAILED = 1798


class VivaClient:
    provider = "viva"

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        environment: str = "demo",
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.is_demo = (environment or "demo").lower() != "live"
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def accounts_url(self) -> str:
        return "https://demo-accounts.vivapayments.com" if self.is_demo else "https://accounts.vivapayments.com"

    @property
    def api_url(self) -> str:
        return "https://demo-api.vivapayments.com" if self.is_demo else "https://api.vivapayments.com"

    def _access_token(self) -> str:
        if not self.client_id or not self.client_secret:
            raise ProviderConfigurationError("Viva.com credentials not configured.")
        data = request_json(
            self.session,
            "POST",
            f"{self.accounts_url}/connect/token",
            provider=self.provider,
            operation="oauth_token",
            timeout=self.timeout,
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        token = data.get("access_token")
        if not token:
            raise ProviderError("Viva.com did not return an access token.")
        return token

    def get_order(self, order_code: str) -> Dict[str, Any]:
        """Fetch the order; ``StateId`` carries the payment state."""

        if not order_code:
            raise ValueError("order_code is required.")
        return request_json(
            self.session,
            "GET",
            f"{self.api_url}/checkout/v2/orders/{order_code}",
            provider=self.provider,
            operation="get_order",
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self._access_token()}"},
        )
