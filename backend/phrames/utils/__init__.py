from phrames.utils.hashing import sign_webhook, verify_webhook_signature
from phrames.utils.timeutil import to_utc, utcnow

__all__ = ["sign_webhook", "verify_webhook_signature", "to_utc", "utcnow"]
