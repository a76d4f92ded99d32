"""
Campaign Activation State Machine — Every write that changes a campaign's
visibility goes through here.

States are Inactive and Active (expiry is a read-time overlay); deletion is
terminal. Each transition is a compare-and-set: the UPDATE is conditioned on
the values read just before it, so a concurrent writer makes the transition
abort with PreconditionFailed instead of being silently overwritten.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from phrames.config import get_settings
from phrames.errors import AuthorizationError, NotFoundError, PreconditionFailed, ValidationError
from phrames.models.campaign import Campaign, STATUS_ACTIVE, STATUS_INACTIVE
from phrames.models.user import User
from phrames.schemas.audit_events import (
    CampaignDeactivated, CampaignDeleted, CampaignExpirySet, CampaignExtended,
    CampaignFreeActivated, CampaignReactivated,
)
from phrames.services.audit_service import AuditService
from phrames.services.plans import expiry_for, is_paid_plan
from phrames.utils.timeutil import add_days, isoformat, utcnow

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    campaign_id: str
    changed: bool
    reason: str = ""
    before: Dict[str, Any] = field(default_factory=dict)
    after: Dict[str, Any] = field(default_factory=dict)


def _snapshot(campaign: Campaign) -> Dict[str, Any]:
    return {
        "is_active": campaign.is_active,
        "status": campaign.status,
        "plan_type": campaign.plan_type,
        "expires_at": isoformat(campaign.expires_at),
    }


def compare_and_set(db: Session, campaign_id: str, expected: Dict[str, Any], values: Dict[str, Any]) -> bool:
    """Conditional single-row UPDATE; True when the row still matched ``expected``.

    Does not commit.
    """
    query = db.query(Campaign).filter(Campaign.id == campaign_id)
    for name, value in expected.items():
        column = getattr(Campaign, name)
        query = query.filter(column.is_(None) if value is None else column == value)
    return query.update({**values, "updated_at": utcnow()}, synchronize_session=False) == 1


def free_activation_values(now: datetime, days: int) -> Dict[str, Any]:
    return {
        "is_active": True,
        "status": STATUS_ACTIVE,
        "is_free_campaign": True,
        "plan_type": "free",
        "amount_paid": 0,
        "payment_ref": None,
        "expires_at": add_days(now, days),
        "last_payment_at": now,
    }


def paid_activation_values(order_id: str, plan_type: str, amount: int, now: datetime) -> Dict[str, Any]:
    return {
        "is_active": True,
        "status": STATUS_ACTIVE,
        "is_free_campaign": False,
        "plan_type": plan_type,
        "amount_paid": amount,
        "payment_ref": order_id,
        "expires_at": expiry_for(plan_type, now),
        "last_payment_at": now,
    }


def _load(db: Session, campaign_id: str) -> Campaign:
    campaign = db.get(Campaign, campaign_id)
    if campaign is None:
        raise NotFoundError(f"Campaign {campaign_id} not found")
    return campaign


class CampaignStateMachine:
    """Transition rules from payment or operator intent to campaign state."""

    # ─── Activation ──────────────────────────────────────────────────

    @staticmethod
    def stage_free_activation(db: Session, campaign: Campaign, user: Optional[User], now: datetime) -> Dict[str, Any]:
        """Stage the free grant and the entitlement flip in the open transaction.

        Both writes commit together or not at all; the caller commits.
        """
        values = free_activation_values(now, get_settings().FREE_CAMPAIGN_DAYS)
        if not compare_and_set(db, campaign.id, {"is_active": False}, values):
            raise PreconditionFailed(f"Campaign {campaign.id} is no longer inactive")

        if user is None:
            db.add(User(uid=campaign.owner_user_id, free_campaign_used=True, created_at=now))
        else:
            flipped = (
                db.query(User)
                .filter(User.uid == user.uid, User.free_campaign_used.is_(False))
                .update({"free_campaign_used": True}, synchronize_session=False)
            )
            if flipped != 1:
                raise PreconditionFailed(f"Free campaign already used by {user.uid}")
        return values

    @staticmethod
    def activate_free(db: Session, campaign_id: str, user_id: str, now: Optional[datetime] = None) -> TransitionResult:
        """Grant the one complimentary activation to the campaign owner."""
        settings = get_settings()
        now = now or utcnow()
        if not settings.FREE_CAMPAIGN_ENABLED:
            raise ValidationError("Free campaigns are currently disabled")

        campaign = _load(db, campaign_id)
        if campaign.owner_user_id != user_id:
            raise AuthorizationError("You do not own this campaign")
        user = db.get(User, user_id)
        if user is not None and user.is_blocked:
            raise AuthorizationError("Your account has been blocked. You cannot activate campaigns at this time.")
        if user is not None and user.free_campaign_used:
            raise AuthorizationError("You have already used your free campaign")
        if campaign.is_active:
            raise PreconditionFailed("Campaign is already active")

        before = _snapshot(campaign)
        try:
            values = CampaignStateMachine.stage_free_activation(db, campaign, user, now)
        except PreconditionFailed:
            db.rollback()
            raise
        db.commit()
        logger.info("Free campaign activated: %s for %s until %s", campaign_id, user_id, values["expires_at"])

        AuditService.log_best_effort(
            db,
            CampaignFreeActivated(campaign_id=campaign_id, user_id=user_id, expires_at=values["expires_at"]),
            actor_id=user_id,
            description=f"Free campaign activated for campaign {campaign_id}",
        )
        return TransitionResult(campaign_id, True, "activated", before, _after(values))

    @staticmethod
    def stage_paid_activation(
        db: Session,
        campaign: Campaign,
        order_id: str,
        plan_type: str,
        amount: int,
        now: datetime,
        require_inactive: bool = False,
    ) -> Dict[str, Any]:
        """Stage the payment-success effect in the open transaction.

        The write is conditioned on the visibility fields read with
        ``campaign``; ``require_inactive`` additionally refuses an already
        active campaign (the recovery path). The caller commits.
        """
        if not is_paid_plan(plan_type):
            raise ValidationError(f"Unknown paid plan type: {plan_type}")
        if require_inactive and campaign.is_active:
            raise PreconditionFailed(f"Campaign {campaign.id} is already active")
        expected = {"is_active": campaign.is_active, "expires_at": campaign.expires_at}
        values = paid_activation_values(order_id, plan_type, amount, now)
        if not compare_and_set(db, campaign.id, expected, values):
            raise PreconditionFailed(f"Campaign {campaign.id} changed while activating order {order_id}")
        return values

    # ─── Operator transitions ────────────────────────────────────────

    @staticmethod
    def deactivate(db: Session, campaign_id: str, actor_id: str, reason: Optional[str] = None) -> TransitionResult:
        campaign = _load(db, campaign_id)
        before = _snapshot(campaign)
        if not campaign.is_active:
            return TransitionResult(campaign_id, False, "already inactive", before, before)

        values = {"is_active": False, "status": STATUS_INACTIVE}
        if not compare_and_set(db, campaign_id, {"is_active": True}, values):
            db.rollback()
            raise PreconditionFailed(f"Campaign {campaign_id} changed before deactivation")
        db.commit()

        AuditService.log_best_effort(
            db,
            CampaignDeactivated(campaign_id=campaign_id, campaign_name=before_name(campaign), reason=reason),
            actor_id=actor_id,
            description=f"Campaign {campaign_id} deactivated",
        )
        return TransitionResult(campaign_id, True, "deactivated", before, {**before, **_after(values)})

    @staticmethod
    def reactivate(
        db: Session,
        campaign_id: str,
        actor_id: str,
        expires_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """Make the campaign visible until ``expires_at`` (default now + 30 days)."""
        now = now or utcnow()
        campaign = _load(db, campaign_id)
        before = _snapshot(campaign)
        name = before_name(campaign)
        new_expiry = expires_at or add_days(now, get_settings().REACTIVATE_DEFAULT_DAYS)

        values = {"is_active": True, "status": STATUS_ACTIVE, "expires_at": new_expiry}
        expected = {"is_active": campaign.is_active, "expires_at": campaign.expires_at}
        if not compare_and_set(db, campaign_id, expected, values):
            db.rollback()
            raise PreconditionFailed(f"Campaign {campaign_id} changed before reactivation")
        db.commit()

        AuditService.log_best_effort(
            db,
            CampaignReactivated(
                campaign_id=campaign_id,
                campaign_name=name,
                was_active=bool(before["is_active"]),
                previous_expires_at=before["expires_at"],
                new_expires_at=new_expiry,
            ),
            actor_id=actor_id,
            description=f"Campaign {campaign_id} reactivated until {new_expiry.isoformat()}",
        )
        return TransitionResult(campaign_id, True, "reactivated", before, {**before, **_after(values)})

    @staticmethod
    def extend(
        db: Session,
        campaign_id: str,
        actor_id: str,
        days: int,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """Push expiry out by ``days`` from the current expiry.

        Remaining time is preserved. A campaign with no expiry is extended
        from ``now``; a past expiry is extended from that past instant.
        """
        if not isinstance(days, int) or isinstance(days, bool) or days <= 0:
            raise ValidationError("days must be a positive integer")
        now = now or utcnow()
        campaign = _load(db, campaign_id)
        before = _snapshot(campaign)
        name = before_name(campaign)
        old_expiry = campaign.expires_at
        try:
            new_expiry = add_days(old_expiry or now, days)
        except ValueError as exc:
            raise ValidationError(f"Cannot extend campaign {campaign_id}: {exc}") from exc

        if not compare_and_set(db, campaign_id, {"expires_at": old_expiry}, {"expires_at": new_expiry}):
            db.rollback()
            raise PreconditionFailed(f"Campaign {campaign_id} expiry changed before extension")
        db.commit()

        AuditService.log_best_effort(
            db,
            CampaignExtended(
                campaign_id=campaign_id,
                campaign_name=name,
                previous_expires_at=old_expiry,
                new_expires_at=new_expiry,
                days=days,
            ),
            actor_id=actor_id,
            description=f"Campaign {campaign_id} extended by {days} day(s)",
        )
        return TransitionResult(campaign_id, True, "extended", before, {**before, "expires_at": isoformat(new_expiry)})

    @staticmethod
    def set_expiry(db: Session, campaign_id: str, actor_id: str, expires_at: datetime) -> TransitionResult:
        if expires_at is None:
            raise ValidationError("Missing expiresAt date")
        campaign = _load(db, campaign_id)
        before = _snapshot(campaign)
        name = before_name(campaign)
        old_expiry = campaign.expires_at

        if not compare_and_set(db, campaign_id, {"expires_at": old_expiry}, {"expires_at": expires_at}):
            db.rollback()
            raise PreconditionFailed(f"Campaign {campaign_id} expiry changed before update")
        db.commit()

        AuditService.log_best_effort(
            db,
            CampaignExpirySet(
                campaign_id=campaign_id,
                campaign_name=name,
                previous_expires_at=old_expiry,
                new_expires_at=expires_at,
            ),
            actor_id=actor_id,
            description=f"Campaign {campaign_id} expiry set to {expires_at.isoformat()}",
        )
        return TransitionResult(campaign_id, True, "expiry set", before, {**before, "expires_at": isoformat(expires_at)})

    @staticmethod
    def delete(db: Session, campaign_id: str, actor_id: str) -> TransitionResult:
        """Remove the campaign row. Payment records are kept."""
        campaign = _load(db, campaign_id)
        before = _snapshot(campaign)
        name = before_name(campaign)
        owner = campaign.owner_user_id

        deleted = db.query(Campaign).filter(Campaign.id == campaign_id).delete(synchronize_session=False)
        if deleted != 1:
            db.rollback()
            raise NotFoundError(f"Campaign {campaign_id} not found")
        db.commit()
        db.expunge_all()

        AuditService.log_best_effort(
            db,
            CampaignDeleted(campaign_id=campaign_id, campaign_name=name, owner_user_id=owner),
            actor_id=actor_id,
            description=f"Campaign {campaign_id} deleted",
        )
        return TransitionResult(campaign_id, True, "deleted", before, {})


def before_name(campaign: Campaign) -> str:
    return campaign.campaign_name or "Unknown"


def _after(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: isoformat(v) if isinstance(v, datetime) else v for k, v in values.items()}
