"""Deliver job completion callbacks to an external service."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import random
import time
from typing import Callable, Dict, Optional

import httpx


log = logging.getLogger(__name__)


def build_signature(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def send_webhook(
    webhook_url: str,
    payload: Dict[str, object],
    secret: str | None,
    *,
    max_attempts: int = 5,
    base_delay: float = 1.0,
    transport: Optional[httpx.BaseTransport] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """POST ``payload`` as JSON, retrying non-2xx and network errors.

    Returns ``True`` once delivered and ``False`` after the last attempt. Never
    raises for delivery problems.
    """

    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    headers = {"Content-Type": "application/json"}

    if secret:
        headers["X-Signature"] = build_signature(secret, body)

    with httpx.Client(timeout=10.0, transport=transport) as client:
        for attempt in range(1, max_attempts + 1):
            try:
                response = client.post(webhook_url, content=body, headers=headers)
            except httpx.HTTPError as exc:
                log.warning(
                    "webhook_attempt_error",
                    extra={"attempt": attempt, "webhook_url": webhook_url, "error": str(exc)},
                )
            else:
                if 200 <= response.status_code < 300:
                    log.info(
                        "webhook_delivered",
                        extra={
                            "attempt": attempt,
                            "status_code": response.status_code,
                            "webhook_url": webhook_url,
                        },
                    )
                    return True

                log.warning(
                    "webhook_attempt_non_2xx",
                    extra={
                        "attempt": attempt,
                        "status_code": response.status_code,
                        "webhook_url": webhook_url,
                        "body": response.text[:200] if response.text else "",
                    },
                )

            if attempt >= max_attempts:
                break

            delay = base_delay * (2 ** (attempt - 1))
            sleep_for = delay + random.uniform(0, delay * 0.25)
            log.info(
                "webhook_retry",
                extra={"next_attempt": attempt + 1, "sleep": round(sleep_for, 2), "webhook_url": webhook_url},
            )
            sleep(sleep_for)

    log.error("webhook_failed", extra={"attempts": max_attempts, "webhook_url": webhook_url})
    return False
