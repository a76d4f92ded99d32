"""
User Model — Only the entitlement fields the monetization lifecycle reads.
"""
from sqlalchemy import Column, String, Boolean

from phrames.database import Base, UTCDateTime
from phrames.utils.timeutil import utcnow


class User(Base):
    __tablename__ = "users"

    uid = Column(String(128), primary_key=True, index=True)
    email = Column(String(256), default="")

    free_campaign_used = Column(Boolean, nullable=False, default=False)
    is_blocked = Column(Boolean, nullable=False, default=False)

    created_at = Column(UTCDateTime, default=utcnow)
