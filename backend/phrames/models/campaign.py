"""
Campaign Model — A shareable photo-frame promotion and its visibility state.
Maps to the 'campaigns' table.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, Integer, Boolean

from phrames.database import Base, UTCDateTime
from phrames.utils.timeutil import utcnow

STATUS_ACTIVE = "Active"
STATUS_INACTIVE = "Inactive"


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_user_id = Column(String(128), nullable=False, index=True)

    campaign_name = Column(String(200), default="")
    slug = Column(String(200), index=True)

    # Visibility: status mirrors is_active and is always written together with it
    is_active = Column(Boolean, nullable=False, default=False, index=True)
    status = Column(String(16), nullable=False, default=STATUS_INACTIVE)

    is_free_campaign = Column(Boolean, nullable=False, default=False)
    plan_type = Column(String(16))            # free | week | month | 3month | 6month | year
    amount_paid = Column(Integer, default=0)  # Whole rupees
    payment_ref = Column(String(64))          # orderId of the activating payment

    expires_at = Column(UTCDateTime, nullable=True, index=True)
    last_payment_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Derived at read time; never persisted."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def is_visible(self, now: Optional[datetime] = None) -> bool:
        return bool(self.is_active) and not self.is_expired(now)
