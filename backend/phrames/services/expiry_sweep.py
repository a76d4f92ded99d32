"""
Expiry Sweep — Deactivates campaigns whose expiry has passed.

Each chunk (one campaign update plus one expiry-log row per campaign) commits
on its own, so a failure mid-run leaves earlier chunks durable. Already
inactive campaigns never match the selection, which makes a rerun a no-op.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from phrames.config import get_settings
from phrames.errors import PartialBatchFailure
from phrames.models.campaign import Campaign, STATUS_INACTIVE
from phrames.models.expiry_log import ExpiryLog, ENTRY_CAMPAIGN, ENTRY_ERROR, ENTRY_SUMMARY
from phrames.utils.batching import chunked, items_per_commit
from phrames.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

OPS_PER_CAMPAIGN = 2
SUMMARY_ID_LIMIT = 100


@dataclass
class SweepResult:
    batch_id: str
    selected: int = 0
    processed: int = 0
    chunks_committed: int = 0
    campaign_ids: List[str] = field(default_factory=list)
    duration_ms: int = 0


class ExpirySweep:
    """Batch job enforcing time-based deactivation."""

    def __init__(self, chunk_size: Optional[int] = None, batch_limit: Optional[int] = None):
        settings = get_settings()
        self.chunk_size = items_per_commit(
            chunk_size or settings.EXPIRY_CHUNK_SIZE,
            OPS_PER_CAMPAIGN,
            batch_limit or settings.STORE_BATCH_LIMIT,
        )

    @staticmethod
    def select_expired(db: Session, now: datetime) -> List[Campaign]:
        return (
            db.query(Campaign)
            .filter(
                Campaign.is_active.is_(True),
                Campaign.expires_at.isnot(None),
                Campaign.expires_at < now,
            )
            .order_by(Campaign.expires_at.asc())
            .all()
        )

    def run(self, db: Session, now: Optional[datetime] = None, manual: bool = False) -> SweepResult:
        """Deactivate every expired campaign as of ``now``.

        Raises:
            PartialBatchFailure: a chunk failed to commit. Earlier chunks stand.
        """
        now = now or utcnow()
        started = time.perf_counter()
        batch_id = f"batch_{int(time.time() * 1000)}" + ("_manual" if manual else "")
        result = SweepResult(batch_id=batch_id)

        expired = self.select_expired(db, now)
        result.selected = len(expired)
        logger.info("Expiry check %s: %d expired campaign(s) found", batch_id, result.selected)

        snapshot = [
            (c.id, c.campaign_name, c.owner_user_id, c.expires_at, c.plan_type)
            for c in expired
        ]

        for chunk in chunked(snapshot, self.chunk_size):
            try:
                deactivated = self._commit_chunk(db, chunk, batch_id, now, manual)
            except SQLAlchemyError as exc:
                db.rollback()
                self._record_error(db, batch_id, now, exc, result, started)
                raise PartialBatchFailure(
                    f"Expiry sweep {batch_id} failed after {result.processed} campaign(s): {exc}",
                    batch_id=batch_id,
                    committed=result.processed,
                ) from exc
            result.processed += len(deactivated)
            result.campaign_ids.extend(deactivated)
            result.chunks_committed += 1
            logger.info(
                "Expiry check %s: committed chunk of %d (total %d)",
                batch_id, len(deactivated), result.processed,
            )

        result.duration_ms = int((time.perf_counter() - started) * 1000)
        self._record_summary(db, result, now)
        logger.info(
            "Expiry check %s completed: %d campaign(s) deactivated in %dms",
            batch_id, result.processed, result.duration_ms,
        )
        return result

    @staticmethod
    def _commit_chunk(db: Session, chunk, batch_id: str, now: datetime, manual: bool) -> List[str]:
        deactivated = []
        for campaign_id, name, owner, expires_at, plan_type in chunk:
            updated = (
                db.query(Campaign)
                .filter(
                    Campaign.id == campaign_id,
                    Campaign.is_active.is_(True),
                    Campaign.expires_at < now,
                )
                .update(
                    {"is_active": False, "status": STATUS_INACTIVE, "updated_at": now},
                    synchronize_session=False,
                )
            )
            if updated != 1:
                # Reactivated or extended since selection
                continue
            db.add(ExpiryLog(
                entry_type=ENTRY_CAMPAIGN,
                batch_id=batch_id,
                campaign_id=campaign_id,
                campaign_name=name or "Unknown",
                user_id=owner,
                expired_at=expires_at,
                plan_type=plan_type or "unknown",
                manual=manual,
                processed_at=now,
            ))
            deactivated.append(campaign_id)
        db.commit()
        return deactivated

    @staticmethod
    def _record_summary(db: Session, result: SweepResult, now: datetime) -> None:
        try:
            db.add(ExpiryLog(
                entry_type=ENTRY_SUMMARY,
                batch_id=result.batch_id,
                total_processed=result.processed,
                duration_ms=result.duration_ms,
                campaign_ids=result.campaign_ids[:SUMMARY_ID_LIMIT],
                processed_at=now,
            ))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not write summary for expiry batch %s", result.batch_id)

    @staticmethod
    def _record_error(db: Session, batch_id: str, now: datetime, exc: Exception, result: SweepResult, started: float) -> None:
        logger.error(
            "Expiry check %s failed after %d campaign(s): %s",
            batch_id, result.processed, exc,
        )
        try:
            db.add(ExpiryLog(
                entry_type=ENTRY_ERROR,
                batch_id=batch_id,
                total_processed=result.processed,
                duration_ms=int((time.perf_counter() - started) * 1000),
                error=str(exc),
                processed_at=now,
            ))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not record failure of expiry batch %s", batch_id)
