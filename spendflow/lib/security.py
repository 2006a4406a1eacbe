"""
Security helpers for SpendFlow.

- hash_uid: log-safe user identification
- verify_stripe_signature: webhook payload authentication
- SecurityHeaders / create_security_middleware: HTTP response hardening
"""

from __future__ import annotations

import hashlib
import hmac
import os
import time
from typing import Any

import structlog

from spendflow.lib.exceptions import WebhookSignatureError

logger = structlog.get_logger()

# Stripe rejects signatures older than five minutes by default
DEFAULT_SIGNATURE_TOLERANCE = 300


def hash_uid(user_id: str) -> str:
    """Return a 12-char salted SHA-256 prefix for log-safe user identification."""
    salt = os.environ.get("SPENDFLOW_HASH_SALT", "")
    return hashlib.sha256(f"{salt}{user_id}".encode()).hexdigest()[:12]


def compute_stripe_signature(payload: bytes, secret: str, timestamp: int) -> str:
    """Compute the v1 signature for ``payload`` signed at ``timestamp``."""
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def verify_stripe_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance: int = DEFAULT_SIGNATURE_TOLERANCE,
    now: float | None = None,
) -> int:
    """
    Verify a ``Stripe-Signature`` header (``t=<ts>,v1=<hex>[,v1=<hex>...]``).

    Args:
        payload: Raw request body, exactly as received
        header: Value of the Stripe-Signature header
        secret: Endpoint signing secret
        tolerance: Maximum age of the signature in seconds
        now: Current unix time (defaults to time.time())

    Returns:
        The signed timestamp

    Raises:
        WebhookSignatureError: If the header is missing, malformed, stale,
            or none of the v1 signatures match
    """
    if not secret:
        raise WebhookSignatureError("Webhook signing secret is not configured")
    if not header:
        raise WebhookSignatureError("Missing signature header")

    timestamp: int | None = None
    signatures: list[str] = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise WebhookSignatureError("Malformed signature timestamp") from None
        elif key == "v1" and value:
            signatures.append(value)

    if timestamp is None or not signatures:
        raise WebhookSignatureError("Malformed signature header")

    current = time.time() if now is None else now
    if tolerance and abs(current - timestamp) > tolerance:
        raise WebhookSignatureError("Signature timestamp outside tolerance")

    expected = compute_stripe_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("No matching signature")
    return timestamp


# ============================================
# Security Headers
# ============================================

class SecurityHeaders:
    """Security headers applied to every HTTP response."""

    DEFAULT_CSP = "default-src 'none'; frame-ancestors 'none'"

    @classmethod
    def get_headers(cls, csp: str | None = None) -> dict[str, str]:
        return {
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Content-Security-Policy": csp or cls.DEFAULT_CSP,
        }

    @classmethod
    def apply_to_response(cls, response: Any, csp: str | None = None) -> Any:
        for name, value in cls.get_headers(csp).items():
            response.headers[name] = value
        return response


def create_security_middleware(app: Any, csp: str | None = None) -> None:
    """Add the security headers middleware to a FastAPI application."""
    from fastapi import Request
    from starlette.middleware.base import BaseHTTPMiddleware

    class SecurityHeadersMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next: Any) -> Any:
            response = await call_next(request)
            return SecurityHeaders.apply_to_response(response, csp)

    app.add_middleware(SecurityHeadersMiddleware)
    logger.info("security_middleware_initialized", csp=csp)
