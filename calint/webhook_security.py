"""
Webhook Security Module

Signature verification for inbound Calendly webhooks:
- Constant-time signature comparison
- Timestamp validation against replayed deliveries
- Raw body is read once and handed back for parsing
"""

import hashlib
import hmac
import logging
import time
from typing import Optional

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

# Maximum age of webhook in seconds (3 minutes, Calendly's recommended tolerance)
MAX_WEBHOOK_AGE_SECONDS = 180

CALENDLY_SIGNATURE_HEADER = "Calendly-Webhook-Signature"


def constant_time_compare(a: str, b: str) -> bool:
    """Compare two strings in constant time"""
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_timestamp(timestamp: Optional[str], max_age: int = MAX_WEBHOOK_AGE_SECONDS) -> bool:
    """
    Verify webhook timestamp is within acceptable range.

    Args:
        timestamp: Unix timestamp as string
        max_age: Maximum age in seconds

    Returns:
        True if timestamp is valid, False otherwise
    """
    try:
        webhook_time = int(timestamp)
        current_time = int(time.time())
        age = abs(current_time - webhook_time)

        if age > max_age:
            logger.warning(f"🚫 Webhook timestamp too old: {age}s (max: {max_age}s)")
            return False

        return True
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False


def parse_signature_header(signature_header: str) -> tuple[Optional[str], Optional[str]]:
    """Split "t=<timestamp>,v1=<signature>" into its parts"""
    elements = {}
    for item in signature_header.split(","):
        if "=" in item:
            key, value = item.split("=", 1)
            elements[key.strip()] = value.strip()
    return elements.get("t"), elements.get("v1")


async def verify_calendly_webhook(
    request: Request, secret: str, raise_on_failure: bool = True
) -> tuple[bool, bytes]:
    """
    Verify Calendly webhook signature.

    Calendly uses:
    - Header: 'Calendly-Webhook-Signature' (format: "t=<timestamp>,v1=<signature>")
    - Signed payload: "<timestamp>.<raw body>"

    Args:
        request: FastAPI request object
        secret: Webhook signing key registered with the subscription
        raise_on_failure: If True, raises HTTPException on failure

    Returns:
        Tuple of (is_valid, raw_body)
    """
    raw_body = await request.body()
    signature_header = request.headers.get(CALENDLY_SIGNATURE_HEADER, "")

    logger.debug("📥 Calendly webhook received")

    if not signature_header:
        logger.warning("🚫 Calendly webhook missing signature header")
        if raise_on_failure:
            raise HTTPException(status_code=401, detail="Missing webhook signature")
        return False, raw_body

    timestamp, signature = parse_signature_header(signature_header)

    if not timestamp or not signature:
        logger.warning("🚫 Calendly webhook invalid signature format")
        if raise_on_failure:
            raise HTTPException(status_code=401, detail="Invalid signature format")
        return False, raw_body

    if not verify_timestamp(timestamp):
        if raise_on_failure:
            raise HTTPException(status_code=401, detail="Webhook timestamp expired")
        return False, raw_body

    signed_payload = timestamp.encode() + b"." + raw_body
    expected_signature = compute_hmac_sha256(secret, signed_payload)

    if not constant_time_compare(expected_signature, signature):
        logger.warning("🚫 Calendly webhook signature mismatch")
        if raise_on_failure:
            raise HTTPException(status_code=401, detail="Invalid webhook signature")
        return False, raw_body

    logger.debug("✅ Calendly webhook signature verified")
    return True, raw_body


def create_webhook_signature(secret: str, payload: bytes, timestamp: Optional[int] = None) -> str:
    """Create a Calendly-format signature header value (used by tests and local replay tooling)"""
    timestamp = timestamp if timestamp is not None else int(time.time())
    sig = compute_hmac_sha256(secret, str(timestamp).encode() + b"." + payload)
    return f"t={timestamp},v1={sig}"
