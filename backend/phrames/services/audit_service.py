"""
Audit Service — Writes the append-only operator audit trail.
"""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from phrames.models.audit import AuditLog
from phrames.schemas.audit_events import AuditEvent, parse_event
from phrames.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class AuditService:
    """Creates audit entries from typed events."""

    @staticmethod
    def log(
        db: Session,
        event: AuditEvent,
        actor_id: str,
        description: str,
    ) -> AuditLog:
        """Persist one audit entry and commit it.

        Args:
            db: Database session.
            event: Typed event; its ``event_type`` selects the metadata schema.
            actor_id: User id of the operator, or ``"system"``.
            description: Human readable summary.

        Returns:
            The created AuditLog entry.
        """
        metadata = event.model_dump(mode="json", exclude={"event_type"})
        entry = AuditLog(
            event_type=event.event_type,
            actor_id=actor_id,
            description=description,
            log_metadata=metadata,
            created_at=utcnow(),
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry

    @staticmethod
    def log_best_effort(
        db: Session,
        event: AuditEvent,
        actor_id: str,
        description: str,
    ) -> Optional[AuditLog]:
        """Like ``log`` but a failed write is reported, not raised.

        Used after a state change has already committed: the audit write must
        never undo it.
        """
        try:
            return AuditService.log(db, event, actor_id, description)
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "Audit write failed for %s by %s: %s",
                event.event_type, actor_id, description,
            )
            return None

    @staticmethod
    def list_recent(
        db: Session,
        event_type: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        """Newest entries first, optionally filtered to one event type."""
        query = db.query(AuditLog)
        if event_type:
            query = query.filter(AuditLog.event_type == event_type)
        return query.order_by(AuditLog.id.desc()).limit(limit).all()

    @staticmethod
    def typed(entry: AuditLog):
        """Parse a stored row back into its event variant."""
        return parse_event(entry.event_type, entry.log_metadata)
