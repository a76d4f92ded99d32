"""
Payment Record Model — One payment attempt for a campaign plan.
The order id is the idempotency key for webhook delivery.
"""
import uuid

from sqlalchemy import Column, String, Integer, Boolean, JSON

from phrames.database import Base, UTCDateTime
from phrames.utils.timeutil import utcnow

PAYMENT_PENDING = "pending"
PAYMENT_SUCCESS = "success"
PAYMENT_FAILED = "failed"


class PaymentRecord(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(64), unique=True, nullable=False, index=True)

    # Not a foreign key: records outlive deleted campaigns as financial history
    campaign_id = Column(String(36), nullable=False, index=True)
    payer_user_id = Column(String(128), nullable=False, index=True)

    plan_type = Column(String(16), nullable=False)
    amount = Column(Integer, nullable=False)           # Whole rupees charged
    original_amount = Column(Integer)
    currency = Column(String(3), default="INR")

    # Status tracking: pending -> success | failed, never reversed
    status = Column(String(16), nullable=False, default=PAYMENT_PENDING, index=True)
    gateway_order_id = Column(String(64), index=True)
    gateway_payment_id = Column(String(64))
    failure_reason = Column(String(256))
    raw_webhook_payload = Column(JSON)

    manually_activated = Column(Boolean, default=False)
    manually_activated_by = Column(String(128))

    created_at = Column(UTCDateTime, default=utcnow)
    completed_at = Column(UTCDateTime, nullable=True)
    webhook_received_at = Column(UTCDateTime, nullable=True)
