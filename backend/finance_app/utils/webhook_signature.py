"""Verification of signed auth-provider webhooks.

Deliveries carry three headers: `webhook-id`, `webhook-timestamp` (unix
seconds) and `webhook-signature`, a space separated list of `v1,<base64>`
entries. Each signature is HMAC-SHA256 over `"{id}.{timestamp}.{body}"`
keyed with the base64-decoded secret (the `whsec_` prefix is stripped).
"""

import base64
import binascii
import hashlib
import hmac
import time
from typing import Mapping, Optional

TOLERANCE_SECONDS = 5 * 60
SECRET_PREFIX = "whsec_"


class WebhookVerificationError(ValueError):
    """Raised when a delivery is unsigned, stale or its signature does not match."""


def _secret_bytes(secret: str) -> bytes:
    if secret.startswith(SECRET_PREFIX):
        secret = secret[len(SECRET_PREFIX):]
    try:
        return base64.b64decode(secret)
    except (binascii.Error, ValueError):
        raise WebhookVerificationError("webhook secret is not valid base64")


def sign(secret: str, msg_id: str, timestamp: str, body: bytes) -> str:
    """Return the `v1,<base64>` signature for a delivery."""
    content = f"{msg_id}.{timestamp}.".encode() + body
    digest = hmac.new(_secret_bytes(secret), content, hashlib.sha256).digest()
    return "v1," + base64.b64encode(digest).decode()


def verify(secret: str, headers: Mapping[str, str], body: bytes, now: Optional[float] = None) -> None:
    """Check the signature headers of a delivery; raise on any mismatch."""
    if not secret:
        raise WebhookVerificationError("webhook secret is not configured")
    msg_id = headers.get("webhook-id")
    timestamp = headers.get("webhook-timestamp")
    signature = headers.get("webhook-signature")
    if not msg_id or not timestamp or not signature:
        raise WebhookVerificationError("missing webhook headers")
    try:
        ts = int(timestamp)
    except ValueError:
        raise WebhookVerificationError("invalid webhook timestamp")
    now = time.time() if now is None else now
    if abs(now - ts) > TOLERANCE_SECONDS:
        raise WebhookVerificationError("webhook timestamp outside tolerance")

    expected = sign(secret, msg_id, timestamp, body).split(",", 1)[1]
    for entry in signature.split():
        version, _, value = entry.partition(",")
        if version == "v1" and hmac.compare_digest(value.encode(), expected.encode()):
            return
    raise WebhookVerificationError("no matching webhook signature")
