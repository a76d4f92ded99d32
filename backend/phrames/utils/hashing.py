"""
Webhook Signature Utilities — HMAC-SHA256 signing as the gateway does it.
"""
import base64
import hashlib
import hmac


def sign_webhook(raw_body: bytes | str, timestamp: str, secret: str) -> str:
    """base64(HMAC-SHA256(secret, timestamp + raw_body))."""
    if isinstance(raw_body, bytes):
        raw_body = raw_body.decode("utf-8")
    digest = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}{raw_body}".encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(
    raw_body: bytes | str,
    signature: str | None,
    timestamp: str | None,
    secret: str,
) -> bool:
    """Constant-time check of the ``x-webhook-signature`` header."""
    if not signature or not timestamp or not secret:
        return False
    expected = sign_webhook(raw_body, timestamp, secret)
    return hmac.compare_digest(expected, signature)
