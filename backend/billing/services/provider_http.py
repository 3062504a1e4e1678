"""Shared HTTP plumbing and error types for payment provider clients."""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import requests
from requests.exceptions import RequestException, Timeout

from billing.observability.metrics import PROVIDER_REQUEST_LATENCY

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15


class ProviderError(RuntimeError):
    """Raised when a payment provider call fails; no local state has been touched."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderConfigurationError(ProviderError):
    """Raised when mandatory provider credentials are missing."""


class ProviderSignatureError(ProviderError):
    """Raised when a webhook signature cannot be verified."""


def request_json(
    session: requests.Session,
    method: str,
    url: str,
    *,
    provider: str,
    operation: str,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> Dict[str, Any]:
    """Perform a provider request and decode the JSON body, translating failures to ``ProviderError``."""

    started = time.monotonic()
    try:
        response = session.request(method, url, timeout=timeout or DEFAULT_TIMEOUT, **kwargs)
    except Timeout as exc:
        logger.error("%s %s timed out after %ss", provider, operation, timeout or DEFAULT_TIMEOUT)
        raise ProviderError(f"{provider} {operation} timed out") from exc
    except RequestException as exc:
        logger.error("%s %s failed due to network error: %s", provider, operation, exc)
        raise ProviderError(f"{provider} {operation} failed: {exc}") from exc
    finally:
        PROVIDER_REQUEST_LATENCY.labels(provider=provider, operation=operation).observe(time.monotonic() - started)

    if response.status_code >= 400:
        logger.warning(
            "%s %s returned HTTP %s: %s",
            provider,
            operation,
            response.status_code,
            response.text[:500],
        )
        raise ProviderError(
            f"{provider} {operation} returned HTTP {response.status_code}",
            status_code=response.status_code,
        )

    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as exc:
        logger.error("%s %s returned invalid JSON: %s", provider, operation, response.text[:500])
        raise ProviderError(f"{provider} {operation} returned invalid JSON") from exc
