from phrames.models.campaign import Campaign
from phrames.models.payment import PaymentRecord
from phrames.models.user import User
from phrames.models.audit import AuditLog
from phrames.models.expiry_log import ExpiryLog

__all__ = ["Campaign", "PaymentRecord", "User", "AuditLog", "ExpiryLog"]
