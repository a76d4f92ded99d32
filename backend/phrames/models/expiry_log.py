"""
Expiry Log Model — Rows written by the expiry sweep.
One 'campaign' row per deactivated campaign, one 'batch_summary' per run,
one 'error' row per failed run.
"""
from sqlalchemy import Column, String, Integer, Boolean, Text, JSON

from phrames.database import Base, UTCDateTime
from phrames.utils.timeutil import utcnow

ENTRY_CAMPAIGN = "campaign"
ENTRY_SUMMARY = "batch_summary"
ENTRY_ERROR = "error"


class ExpiryLog(Base):
    __tablename__ = "expiry_logs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    entry_type = Column(String(16), nullable=False, default=ENTRY_CAMPAIGN)
    batch_id = Column(String(64), nullable=False, index=True)

    campaign_id = Column(String(36), index=True)
    campaign_name = Column(String(200))
    user_id = Column(String(128))
    expired_at = Column(UTCDateTime)          # expiresAt the campaign had
    plan_type = Column(String(16))
    manual = Column(Boolean, default=False)

    total_processed = Column(Integer)
    duration_ms = Column(Integer)
    campaign_ids = Column(JSON)
    error = Column(Text)

    processed_at = Column(UTCDateTime, default=utcnow)
