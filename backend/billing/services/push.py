"""Push gateway client: hands web-push payloads to an HTTP relay that owns the VAPID keys."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from billing.services.provider_http import ProviderError, request_json

logger = logging.getLogger(__name__)

# The relay reports these when the browser endpoint no longer exists.
GONE_STATUS_CODES = {404, 410}

DEFAULT_ICON = "/pwa-icon-192.png"


class PushSubscriptionGone(ProviderError):
    """Raised when the push service reports the subscription endpoint as expired."""


class PushGatewayClient:
    provider = "push"

    def __init__(
        self,
        *,
        url: str,
        token: str = "",
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def send(self, subscription, *, title: str, body: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        message = {
            "subscription": {
                "endpoint": subscription.endpoint,
                "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
            },
            "payload": {
                "title": title,
                "body": body,
                "icon": DEFAULT_ICON,
                "badge": DEFAULT_ICON,
                "data": data or {},
            },
        }
        try:
            return request_json(
                self.session,
                "POST",
                self.url,
                provider=self.provider,
                operation="send",
                timeout=self.timeout,
                json=message,
                headers=headers,
            )
        except ProviderError as exc:
            if exc.status_code in GONE_STATUS_CODES:
                raise PushSubscriptionGone(str(exc), status_code=exc.status_code) from exc
            raise
