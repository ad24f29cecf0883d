"""
Webhook Security Module

Signature verification for payment-gateway callbacks:
- Constant-time signature comparison
- Timestamp validation against replays
- Signatures are computed over the raw request body
"""

import hashlib
import hmac
import logging
import time
from typing import Optional

from fastapi import HTTPException, Request

from . import config

logger = logging.getLogger(__name__)

# Maximum age of webhook in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300

SIGNATURE_HEADER = "X-Gateway-Signature"
TIMESTAMP_HEADER = "X-Gateway-Timestamp"


def constant_time_compare(a: str, b: str) -> bool:
    """Compare two strings in constant time"""
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def sign_gateway_payload(secret: str, body: bytes, timestamp: Optional[str] = None) -> str:
    """
    Signature the gateway sends for a callback.

    With a timestamp the signed message is `<timestamp>.<body>`, otherwise the
    raw body alone.
    """
    message = f"{timestamp}.".encode("utf-8") + body if timestamp else body
    return compute_hmac_sha256(secret, message)


def verify_timestamp(timestamp: Optional[str], max_age: int = MAX_WEBHOOK_AGE_SECONDS) -> bool:
    """
    Verify webhook timestamp is within acceptable range.

    Args:
        timestamp: Unix timestamp as string
        max_age: Maximum age in seconds

    Returns:
        True if timestamp is valid or absent, False otherwise
    """
    if not timestamp:
        return True

    try:
        age = abs(int(time.time()) - int(timestamp))
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False

    if age > max_age:
        logger.warning(f"🚫 Webhook timestamp too old: {age}s (max: {max_age}s)")
        return False
    return True


async def verify_gateway_webhook(request: Request) -> bytes:
    """
    Verify a payment-gateway callback and return its raw body.

    Raises:
        HTTPException: 401 when the signature or timestamp is rejected
    """
    raw_body = await request.body()
    secret = config.PAYMENT_GATEWAY_WEBHOOK_SECRET

    if not secret:
        logger.warning("⚠️ PAYMENT_GATEWAY_WEBHOOK_SECRET not set - accepting unsigned callback")
        return raw_body

    signature = request.headers.get(SIGNATURE_HEADER, "")
    timestamp = request.headers.get(TIMESTAMP_HEADER)

    if not signature:
        logger.error("❌ Missing gateway signature header")
        raise HTTPException(status_code=401, detail="Missing webhook signature")

    if not verify_timestamp(timestamp):
        raise HTTPException(status_code=401, detail="Webhook timestamp expired")

    expected = sign_gateway_payload(secret, raw_body, timestamp)
    if not constant_time_compare(signature.strip().lower(), expected):
        logger.error("❌ Gateway signature mismatch")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    logger.info("✅ Gateway callback signature verified")
    return raw_body
