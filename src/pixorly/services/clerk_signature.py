"""Svix signature validation for Clerk webhooks.

Clerk delivers webhooks through Svix. Each request carries `svix-id`,
`svix-timestamp` and `svix-signature` headers; the signature is an
HMAC-SHA256 over `"{id}.{timestamp}.{body}"` keyed with the base64 part of
the `whsec_...` endpoint secret.

Security Note:
    validate_clerk_signature MUST be called before processing any webhook
    payload. Return 401 Unauthorized immediately if validation fails.
"""

import base64
import binascii
import hashlib
import hmac
import time
from typing import Optional

# Reject deliveries whose timestamp is further than this from now (replay window)
TIMESTAMP_TOLERANCE_SECONDS = 5 * 60


def _decode_secret(secret: str) -> bytes:
    if secret.startswith("whsec_"):
        secret = secret[len("whsec_") :]
    try:
        return base64.b64decode(secret)
    except (binascii.Error, ValueError):
        # Secrets that are not base64 are used as raw key material
        return secret.encode("utf-8")


def compute_signature(secret: str, msg_id: str, timestamp: str, raw_body: bytes) -> str:
    """Compute the base64 Svix v1 signature for a payload."""
    signed_content = f"{msg_id}.{timestamp}.".encode("utf-8") + raw_body
    digest = hmac.new(_decode_secret(secret), signed_content, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_clerk_signature(
    raw_body: bytes,
    msg_id: str,
    timestamp: str,
    signature_header: str,
    secret: str,
    now: Optional[float] = None,
) -> bool:
    """Validate a Clerk (Svix) webhook signature.

    Args:
        raw_body: Raw request body bytes, exactly as received
        msg_id: Value of the svix-id header
        timestamp: Value of the svix-timestamp header (unix seconds)
        signature_header: Value of the svix-signature header; space separated
            `v1,<base64>` entries (several during secret rotation)
        secret: Endpoint signing secret (`whsec_...`)
        now: Current unix time, for tests

    Returns:
        True if any v1 signature matches and the timestamp is fresh, False otherwise.
    """
    if not (msg_id and timestamp and signature_header and secret):
        return False

    try:
        sent_at = int(timestamp)
    except ValueError:
        return False

    current = time.time() if now is None else now
    if abs(current - sent_at) > TIMESTAMP_TOLERANCE_SECONDS:
        return False

    expected = compute_signature(secret, msg_id, timestamp, raw_body)

    for entry in signature_header.split():
        version, _, candidate = entry.partition(",")
        if version != "v1" or not candidate:
            continue
        # Constant-time comparison to prevent timing attacks
        if hmac.compare_digest(expected, candidate):
            return True

    return False
