"""
Reconciliation Engine — Repairs campaigns whose stored state disagrees with
the ledger ("stuck campaigns"), usually because a webhook never arrived.

Candidates are always inactive campaigns, so a campaign repaired by one run
is excluded from the next and recovery can be rerun safely.
"""
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from phrames.config import get_settings
from phrames.errors import NotFoundError, PreconditionFailed, ValidationError
from phrames.models.campaign import Campaign
from phrames.models.expiry_log import ExpiryLog
from phrames.models.payment import PaymentRecord, PAYMENT_FAILED, PAYMENT_PENDING, PAYMENT_SUCCESS
from phrames.models.user import User
from phrames.schemas.audit_events import CampaignFreeRecovered, CampaignManualActivation, OrphanCleanup
from phrames.services.activation import CampaignStateMachine
from phrames.services.audit_service import AuditService, SYSTEM_ACTOR
from phrames.services.plans import is_paid_plan
from phrames.utils.batching import chunked
from phrames.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

KIND_PAID = "paid"
KIND_FREE = "free"


@dataclass
class StuckCampaign:
    kind: str
    campaign_id: str
    user_id: str
    campaign_name: str = ""
    order_id: Optional[str] = None
    plan_type: Optional[str] = None
    amount: int = 0


@dataclass
class FixResult:
    campaign_id: str
    fixed: bool
    reason: str
    kind: Optional[str] = None
    expires_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["expires_at"] = self.expires_at.isoformat() if self.expires_at else None
        return data


@dataclass
class FixSummary:
    found: int = 0
    fixed: int = 0
    skipped: int = 0
    dry_run: bool = False
    results: List[FixResult] = field(default_factory=list)


@dataclass
class CleanupResult:
    deleted_payments: int = 0
    deleted_expiry_logs: int = 0
    campaign_ids: List[str] = field(default_factory=list)
    dry_run: bool = False


class ReconciliationEngine:
    """Detects and repairs divergence between ledger truth and campaign state."""

    def __init__(self, batch_limit: Optional[int] = None):
        self.batch_limit = batch_limit or get_settings().STORE_BATCH_LIMIT

    # ─── Detection ───────────────────────────────────────────────────

    def find_stuck_campaigns(self, db: Session) -> List[StuckCampaign]:
        """Inactive campaigns with a successful payment, then inactive free
        campaigns whose owner never received the free grant."""
        stuck: List[StuckCampaign] = []
        seen = set()

        paid_rows = (
            db.query(PaymentRecord, Campaign)
            .join(Campaign, Campaign.id == PaymentRecord.campaign_id)
            .filter(PaymentRecord.status == PAYMENT_SUCCESS, Campaign.is_active.is_(False))
            .order_by(PaymentRecord.completed_at.desc(), PaymentRecord.created_at.desc())
            .all()
        )
        for payment, campaign in paid_rows:
            if campaign.id in seen:
                continue
            seen.add(campaign.id)
            stuck.append(StuckCampaign(
                kind=KIND_PAID,
                campaign_id=campaign.id,
                user_id=payment.payer_user_id,
                campaign_name=campaign.campaign_name or "",
                order_id=payment.order_id,
                plan_type=payment.plan_type,
                amount=payment.amount,
            ))

        free_rows = (
            db.query(Campaign, User)
            .outerjoin(User, User.uid == Campaign.owner_user_id)
            .filter(Campaign.is_active.is_(False), Campaign.is_free_campaign.is_(True))
            .order_by(Campaign.created_at.asc())
            .all()
        )
        granted_owners = set()
        for campaign, user in free_rows:
            if campaign.id in seen or (user is not None and user.free_campaign_used):
                continue
            # One grant per user: the oldest orphaned free campaign gets it
            if campaign.owner_user_id in granted_owners:
                continue
            granted_owners.add(campaign.owner_user_id)
            seen.add(campaign.id)
            stuck.append(StuckCampaign(
                kind=KIND_FREE,
                campaign_id=campaign.id,
                user_id=campaign.owner_user_id,
                campaign_name=campaign.campaign_name or "",
                plan_type="free",
            ))
        return stuck

    # ─── Repair ──────────────────────────────────────────────────────

    def fix_stuck_campaigns(
        self,
        db: Session,
        actor_id: str = SYSTEM_ACTOR,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ) -> FixSummary:
        """Repair every stuck campaign; each repair commits on its own."""
        now = now or utcnow()
        candidates = self.find_stuck_campaigns(db)
        summary = FixSummary(found=len(candidates), dry_run=dry_run)
        logger.info("Found %d stuck campaign(s)%s", len(candidates), " (dry run)" if dry_run else "")

        for candidate in candidates:
            if dry_run:
                result = self._preview(db, candidate)
            else:
                try:
                    result = self._repair(db, candidate, actor_id, now, source="fix_stuck")
                except SQLAlchemyError:
                    db.rollback()
                    logger.exception("Error fixing campaign %s", candidate.campaign_id)
                    result = FixResult(candidate.campaign_id, False, "store error", candidate.kind)
            summary.results.append(result)
            if result.fixed:
                summary.fixed += 1
            else:
                summary.skipped += 1
        logger.info(
            "Stuck campaign run: found=%d fixed=%d skipped=%d dry_run=%s",
            summary.found, summary.fixed, summary.skipped, dry_run,
        )
        return summary

    def fix_single(
        self,
        db: Session,
        campaign_id: str,
        actor_id: str = SYSTEM_ACTOR,
        order_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> FixResult:
        """Apply the same guarded repair to one campaign.

        With ``order_id``, that payment drives the repair; a still-pending
        record is promoted to success as a manual activation.
        """
        now = now or utcnow()
        campaign = db.get(Campaign, campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        if campaign.is_active:
            return FixResult(campaign_id, False, "campaign already active")

        if order_id:
            payment = db.query(PaymentRecord).filter(PaymentRecord.order_id == order_id).first()
            if payment is None:
                raise NotFoundError("Payment record not found")
            if payment.campaign_id != campaign_id:
                raise ValidationError("Campaign ID does not match payment record")
            if payment.status == PAYMENT_FAILED:
                return FixResult(campaign_id, False, "Cannot activate campaign with failed payment", KIND_PAID)
            candidate = self._paid_candidate(campaign, payment)
            return self._repair(
                db, candidate, actor_id, now, source="fix_single",
                promote_pending=payment.status == PAYMENT_PENDING,
            )

        for candidate in self.find_stuck_campaigns(db):
            if candidate.campaign_id == campaign_id:
                return self._repair(db, candidate, actor_id, now, source="fix_single")
        return FixResult(campaign_id, False, "no successful payment or unused free grant for this campaign")

    @staticmethod
    def _paid_candidate(campaign: Campaign, payment: PaymentRecord) -> StuckCampaign:
        return StuckCampaign(
            kind=KIND_PAID,
            campaign_id=campaign.id,
            user_id=payment.payer_user_id,
            campaign_name=campaign.campaign_name or "",
            order_id=payment.order_id,
            plan_type=payment.plan_type,
            amount=payment.amount,
        )

    @staticmethod
    def _preview(db: Session, candidate: StuckCampaign) -> FixResult:
        user = db.get(User, candidate.user_id)
        if user is not None and user.is_blocked:
            return FixResult(candidate.campaign_id, False, "user is blocked", candidate.kind)
        return FixResult(candidate.campaign_id, True, "would activate", candidate.kind)

    def _repair(
        self,
        db: Session,
        candidate: StuckCampaign,
        actor_id: str,
        now: datetime,
        source: str,
        promote_pending: bool = False,
    ) -> FixResult:
        campaign = db.get(Campaign, candidate.campaign_id)
        if campaign is None:
            logger.warning("Campaign %s vanished before repair", candidate.campaign_id)
            return FixResult(candidate.campaign_id, False, "campaign not found", candidate.kind)
        user = db.get(User, candidate.user_id)
        if user is not None and user.is_blocked:
            logger.info("Skipping stuck campaign %s: user %s is blocked", candidate.campaign_id, candidate.user_id)
            return FixResult(candidate.campaign_id, False, "user is blocked", candidate.kind)

        if candidate.kind == KIND_FREE:
            return self._repair_free(db, campaign, user, actor_id, now)
        return self._repair_paid(db, campaign, candidate, actor_id, now, source, promote_pending)

    @staticmethod
    def _repair_paid(db, campaign, candidate, actor_id, now, source, promote_pending) -> FixResult:
        if campaign.owner_user_id != candidate.user_id:
            return FixResult(campaign.id, False, "payer does not own campaign", KIND_PAID)
        if not is_paid_plan(candidate.plan_type or ""):
            return FixResult(campaign.id, False, f"unknown plan type {candidate.plan_type}", KIND_PAID)
        try:
            if promote_pending:
                promoted = (
                    db.query(PaymentRecord)
                    .filter(PaymentRecord.order_id == candidate.order_id, PaymentRecord.status == PAYMENT_PENDING)
                    .update({
                        "status": PAYMENT_SUCCESS,
                        "completed_at": now,
                        "manually_activated": True,
                        "manually_activated_by": actor_id,
                    }, synchronize_session=False)
                )
                if promoted != 1:
                    raise PreconditionFailed(f"Order {candidate.order_id} is no longer pending")
            values = CampaignStateMachine.stage_paid_activation(
                db, campaign, candidate.order_id, candidate.plan_type, candidate.amount, now,
                require_inactive=True,
            )
        except PreconditionFailed as exc:
            db.rollback()
            return FixResult(campaign.id, False, exc.message, KIND_PAID)
        db.commit()

        expires_at = values["expires_at"]
        logger.info("Recovered paid campaign %s from order %s", campaign.id, candidate.order_id)
        AuditService.log_best_effort(
            db,
            CampaignManualActivation(
                campaign_id=candidate.campaign_id,
                order_id=candidate.order_id,
                user_id=candidate.user_id,
                amount=candidate.amount,
                plan_type=candidate.plan_type,
                expires_at=expires_at,
                source=source,
            ),
            actor_id=actor_id,
            description=f"Campaign manually activated for order {candidate.order_id}",
        )
        return FixResult(candidate.campaign_id, True, "activated from successful payment", KIND_PAID, expires_at)

    @staticmethod
    def _repair_free(db, campaign, user, actor_id, now) -> FixResult:
        campaign_id, owner = campaign.id, campaign.owner_user_id
        try:
            values = CampaignStateMachine.stage_free_activation(db, campaign, user, now)
        except PreconditionFailed as exc:
            db.rollback()
            return FixResult(campaign_id, False, exc.message, KIND_FREE)
        db.commit()

        expires_at = values["expires_at"]
        logger.info("Recovered free campaign %s for %s", campaign_id, owner)
        AuditService.log_best_effort(
            db,
            CampaignFreeRecovered(campaign_id=campaign_id, user_id=owner, expires_at=expires_at),
            actor_id=actor_id,
            description=f"Free campaign grant recovered for campaign {campaign_id}",
        )
        return FixResult(campaign_id, True, "free grant recovered", KIND_FREE, expires_at)

    # ─── Orphan cleanup ──────────────────────────────────────────────

    def cleanup_orphaned(self, db: Session, actor_id: str = SYSTEM_ACTOR, dry_run: bool = False) -> CleanupResult:
        """Delete payment records and expiry-log rows whose campaign is gone."""
        existing = select(Campaign.id)
        payment_rows = (
            db.query(PaymentRecord.id, PaymentRecord.campaign_id)
            .filter(PaymentRecord.campaign_id.notin_(existing))
            .all()
        )
        expiry_rows = (
            db.query(ExpiryLog.id, ExpiryLog.campaign_id)
            .filter(ExpiryLog.campaign_id.isnot(None), ExpiryLog.campaign_id.notin_(existing))
            .all()
        )
        campaign_ids = sorted({row.campaign_id for row in payment_rows} | {row.campaign_id for row in expiry_rows})
        result = CleanupResult(campaign_ids=campaign_ids, dry_run=dry_run)

        if dry_run:
            result.deleted_payments = len(payment_rows)
            result.deleted_expiry_logs = len(expiry_rows)
            return result

        for chunk in chunked([row.id for row in payment_rows], self.batch_limit):
            result.deleted_payments += (
                db.query(PaymentRecord).filter(PaymentRecord.id.in_(chunk)).delete(synchronize_session=False)
            )
            db.commit()
        for chunk in chunked([row.id for row in expiry_rows], self.batch_limit):
            result.deleted_expiry_logs += (
                db.query(ExpiryLog).filter(ExpiryLog.id.in_(chunk)).delete(synchronize_session=False)
            )
            db.commit()

        logger.info(
            "Orphan cleanup: %d payment record(s), %d expiry log(s) for %d missing campaign(s)",
            result.deleted_payments, result.deleted_expiry_logs, len(campaign_ids),
        )
        if result.deleted_payments or result.deleted_expiry_logs:
            AuditService.log_best_effort(
                db,
                OrphanCleanup(
                    deleted_payments=result.deleted_payments,
                    deleted_expiry_logs=result.deleted_expiry_logs,
                    campaign_ids=campaign_ids[:100],
                ),
                actor_id=actor_id,
                description=f"Removed data for {len(campaign_ids)} deleted campaign(s)",
            )
        return result
