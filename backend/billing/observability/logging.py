"""Structured logging helper for billing events."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger("billing")


def log_billing_event(*, message: str, provider: Optional[str] = None, user_id: Optional[Any] = None,
                      actor: Optional[str] = None, event_key: Optional[str] = None,
                      extra: Optional[Dict[str, Any]] = None, level: int = logging.INFO) -> None:
    payload: Dict[str, Any] = {"message": message}
    if provider:
        payload["provider"] = provider
    if user_id is not None:
        payload["user_id"] = str(user_id)
    if actor:
        payload["actor"] = actor
    if event_key:
        payload["event_key"] = event_key
    if extra:
        payload.update(extra)
    logger.log(level, payload)
