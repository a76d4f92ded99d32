"""
Audit Log Model — Append-only operator audit trail.
Rows are written through AuditService only and never updated or deleted.
"""
from sqlalchemy import Column, String, Integer, Text, JSON

from phrames.database import Base, UTCDateTime
from phrames.utils.timeutil import utcnow


class AuditLog(Base):
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)

    event_type = Column(String(50), nullable=False, index=True)

    actor_id = Column(String(128), nullable=False)     # user id or "system"
    description = Column(Text, default="")

    log_metadata = Column(JSON, default=dict)
    created_at = Column(UTCDateTime, default=utcnow, index=True)
