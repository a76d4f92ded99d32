"""
Payment Ledger — Payment attempts keyed by order id, and webhook application.

Webhook delivery is at-least-once. The pending -> terminal flip is a
conditional UPDATE on ``status == 'pending'``, so a replayed webhook is
detected before any side effect runs.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from phrames.config import get_settings
from phrames.errors import (
    AuthorizationError, DuplicateOrder, NotFoundError, OrphanWebhook,
    PreconditionFailed, ValidationError,
)
from phrames.models.campaign import Campaign
from phrames.models.payment import PaymentRecord, PAYMENT_FAILED, PAYMENT_PENDING, PAYMENT_SUCCESS
from phrames.models.user import User
from phrames.schemas.audit_events import PaymentFailure, PaymentInitiated, PaymentSuccess, WebhookFailure
from phrames.services.activation import CampaignStateMachine
from phrames.services.audit_service import AuditService, SYSTEM_ACTOR
from phrames.services.gateway import CashfreeClient, Customer
from phrames.services.plans import is_paid_plan, plan_price
from phrames.utils.timeutil import isoformat, utcnow

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = {"SUCCESS"}
FAILED_STATUSES = {"FAILED", "USER_DROPPED", "CANCELLED", "VOID"}
SUCCESS_TYPES = {"PAYMENT_SUCCESS_WEBHOOK"}
FAILED_TYPES = {"PAYMENT_FAILED_WEBHOOK", "PAYMENT_USER_DROPPED_WEBHOOK"}


class WebhookOutcome(str, Enum):
    APPLIED = "applied"
    ALREADY_PROCESSED = "already_processed"
    ORPHAN = "orphan"
    IGNORED = "ignored"


@dataclass
class WebhookResult:
    outcome: WebhookOutcome
    order_id: Optional[str] = None
    status: Optional[str] = None
    activated: bool = False
    detail: str = ""


@dataclass
class ParsedWebhook:
    order_id: Optional[str]
    outcome: Optional[str]          # success | failed | None (not terminal)
    webhook_type: Optional[str]
    gateway_payment_id: Optional[str]
    message: Optional[str]
    data: Dict[str, Any]


def parse_webhook(payload: Dict[str, Any]) -> ParsedWebhook:
    """Accepts both ``{type, data: {order, payment}}`` and ``{order, payment}``."""
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")
    data = payload.get("data") if "data" in payload else payload
    if not isinstance(data, dict):
        raise ValidationError("Malformed webhook payload: data must be an object")
    order = data.get("order") or {}
    payment = data.get("payment") or {}
    if not isinstance(order, dict) or not isinstance(payment, dict):
        raise ValidationError("Malformed webhook payload: order and payment must be objects")
    webhook_type = payload.get("type")

    status = str(payment.get("payment_status") or "").upper()
    if status in SUCCESS_STATUSES or (not status and webhook_type in SUCCESS_TYPES):
        outcome = PAYMENT_SUCCESS
    elif status in FAILED_STATUSES or (not status and webhook_type in FAILED_TYPES):
        outcome = PAYMENT_FAILED
    else:
        outcome = None

    payment_id = payment.get("cf_payment_id")
    return ParsedWebhook(
        order_id=order.get("order_id"),
        outcome=outcome,
        webhook_type=webhook_type,
        gateway_payment_id=str(payment_id) if payment_id is not None else None,
        message=payment.get("payment_message"),
        data=data,
    )


class PaymentLedger:
    """Creates payment records and applies gateway outcomes to them."""

    def __init__(self, gateway: Optional[CashfreeClient] = None):
        self.gateway = gateway

    # ─── Lookups ─────────────────────────────────────────────────────

    @staticmethod
    def find_by_order_id(db: Session, order_id: str) -> Optional[PaymentRecord]:
        record = db.query(PaymentRecord).filter(PaymentRecord.order_id == order_id).first()
        if record is None:
            record = db.query(PaymentRecord).filter(PaymentRecord.gateway_order_id == order_id).first()
        return record

    # ─── Order creation ──────────────────────────────────────────────

    @staticmethod
    def create_pending_record(
        db: Session,
        order_id: str,
        campaign_id: str,
        payer_user_id: str,
        plan_type: str,
        amount: int,
        gateway_order_id: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> PaymentRecord:
        """Insert a pending record; the order id must be new."""
        if db.query(PaymentRecord.id).filter(PaymentRecord.order_id == order_id).first():
            raise DuplicateOrder(f"Order {order_id} already exists")

        record = PaymentRecord(
            order_id=order_id,
            campaign_id=campaign_id,
            payer_user_id=payer_user_id,
            plan_type=plan_type,
            amount=amount,
            original_amount=amount,
            currency=currency or get_settings().CURRENCY,
            status=PAYMENT_PENDING,
            gateway_order_id=gateway_order_id or order_id,
            created_at=utcnow(),
        )
        db.add(record)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise DuplicateOrder(f"Order {order_id} already exists") from exc
        db.refresh(record)
        return record

    def initiate_order(self, db: Session, campaign_id: str, plan_type: str, payer_user_id: str) -> Dict[str, str]:
        """Validate the request, create the gateway order, record it pending."""
        settings = get_settings()
        if not campaign_id or not plan_type:
            raise ValidationError("Missing required fields: campaignId and planType")
        if not is_paid_plan(plan_type):
            raise ValidationError("Invalid plan type")

        campaign = db.get(Campaign, campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign not found")
        if campaign.owner_user_id != payer_user_id:
            raise AuthorizationError("You do not have permission to activate this campaign")
        if campaign.is_free_campaign:
            raise ValidationError("This is a free campaign and does not require payment")
        user = db.get(User, payer_user_id)
        if user is not None and user.is_blocked:
            raise AuthorizationError("Your account has been blocked")

        amount = plan_price(plan_type)
        order_id = f"order_{int(time.time() * 1000)}_{campaign_id[:8]}"
        base_url = settings.APP_URL.rstrip("/")

        if self.gateway is None:
            raise ValidationError("Payment system is not configured. Please contact support.")
        gateway_order = self.gateway.create_order(
            order_id=order_id,
            amount=amount,
            currency=settings.CURRENCY,
            customer=Customer(customer_id=payer_user_id, email=(user.email if user and user.email else "user@example.com")),
            return_url=f"{base_url}/dashboard?payment=success&campaignId={campaign_id}",
            notify_url=f"{base_url}/api/payments/webhook",
            note=f"Campaign: {campaign.campaign_name} - Plan: {plan_type}",
        )

        record = self.create_pending_record(
            db, order_id, campaign_id, payer_user_id, plan_type, amount,
            gateway_order_id=gateway_order.gateway_order_id,
        )
        AuditService.log_best_effort(
            db,
            PaymentInitiated(
                order_id=order_id,
                gateway_order_id=record.gateway_order_id,
                campaign_id=campaign_id,
                amount=amount,
                plan_type=plan_type,
            ),
            actor_id=payer_user_id,
            description=f"Payment initiated for campaign {campaign_id}",
        )
        logger.info("Payment initiated: order=%s campaign=%s plan=%s amount=%s", order_id, campaign_id, plan_type, amount)
        return {"orderId": order_id, "paymentSessionId": gateway_order.session_ref}

    # ─── Webhook application ─────────────────────────────────────────

    def apply_webhook(self, db: Session, payload: Dict[str, Any], now=None) -> WebhookResult:
        """Apply one gateway notification to the ledger.

        Returns a result for every well-formed payload, including orphans and
        replays. Raises ValidationError for a payload without an order id and
        PreconditionFailed if the campaign changed underneath the activation
        (nothing is written; the gateway's redelivery retries it).
        """
        now = now or utcnow()
        parsed = parse_webhook(payload)
        if not parsed.order_id:
            AuditService.log_best_effort(
                db,
                WebhookFailure(webhook_type=parsed.webhook_type, error="No order ID in webhook payload"),
                actor_id=SYSTEM_ACTOR,
                description="Webhook rejected: no order ID in payload",
            )
            raise ValidationError("No order ID in webhook payload")

        record = self.find_by_order_id(db, parsed.order_id)
        if record is None:
            return self._orphan(db, parsed)

        if record.status != PAYMENT_PENDING:
            if parsed.gateway_payment_id and record.gateway_payment_id and parsed.gateway_payment_id != record.gateway_payment_id:
                logger.warning(
                    "Conflicting duplicate webhook for order %s: stored payment %s, received %s (%s)",
                    record.order_id, record.gateway_payment_id, parsed.gateway_payment_id, parsed.outcome,
                )
            else:
                logger.info("Webhook for order %s already processed (%s)", record.order_id, record.status)
            return WebhookResult(WebhookOutcome.ALREADY_PROCESSED, record.order_id, record.status)

        if parsed.outcome is None:
            logger.info("Non-terminal webhook for order %s ignored (type=%s)", record.order_id, parsed.webhook_type)
            return WebhookResult(WebhookOutcome.IGNORED, record.order_id, record.status)

        if parsed.outcome == PAYMENT_FAILED:
            return self._apply_failure(db, record, parsed, parsed.message or "Payment failed at gateway", now)
        return self._apply_success(db, record, parsed, now)

    def _orphan(self, db: Session, parsed: ParsedWebhook) -> WebhookResult:
        anomaly = OrphanWebhook(f"Payment record not found for order {parsed.order_id}", order_id=parsed.order_id)
        logger.warning("Orphan webhook: %s", anomaly.message)
        AuditService.log_best_effort(
            db,
            WebhookFailure(order_id=parsed.order_id, webhook_type=parsed.webhook_type, error=anomaly.message),
            actor_id=SYSTEM_ACTOR,
            description=anomaly.message,
        )
        return WebhookResult(WebhookOutcome.ORPHAN, parsed.order_id, detail=anomaly.message)

    @staticmethod
    def _claim(db: Session, record: PaymentRecord, status: str, parsed: ParsedWebhook, now, reason: Optional[str] = None) -> bool:
        """pending -> terminal, only if still pending. Does not commit."""
        values = {
            "status": status,
            "completed_at": now,
            "webhook_received_at": now,
            "gateway_payment_id": parsed.gateway_payment_id,
            "raw_webhook_payload": parsed.data,
        }
        if reason:
            values["failure_reason"] = reason[:256]
        claimed = (
            db.query(PaymentRecord)
            .filter(PaymentRecord.id == record.id, PaymentRecord.status == PAYMENT_PENDING)
            .update(values, synchronize_session=False)
        )
        return claimed == 1

    def _apply_failure(self, db: Session, record: PaymentRecord, parsed: ParsedWebhook, reason: str, now) -> WebhookResult:
        order_id, campaign_id, payer = record.order_id, record.campaign_id, record.payer_user_id
        amount, plan_type = record.amount, record.plan_type
        if not self._claim(db, record, PAYMENT_FAILED, parsed, now, reason):
            db.rollback()
            return WebhookResult(WebhookOutcome.ALREADY_PROCESSED, order_id)
        db.commit()
        logger.info("Payment failed: order=%s reason=%s", order_id, reason)

        AuditService.log_best_effort(
            db,
            PaymentFailure(
                order_id=order_id, user_id=payer, campaign_id=campaign_id,
                amount=amount, plan_type=plan_type, reason=reason,
            ),
            actor_id=SYSTEM_ACTOR,
            description=f"Payment failed for order {order_id}",
        )
        return WebhookResult(WebhookOutcome.APPLIED, order_id, PAYMENT_FAILED, detail=reason)

    def _apply_success(self, db: Session, record: PaymentRecord, parsed: ParsedWebhook, now) -> WebhookResult:
        order_id, campaign_id, payer = record.order_id, record.campaign_id, record.payer_user_id
        amount, plan_type = record.amount, record.plan_type

        user = db.get(User, payer)
        if user is not None and user.is_blocked:
            logger.warning("Payer %s is blocked; order %s marked failed", payer, order_id)
            return self._apply_failure(db, record, parsed, "User is blocked, cannot activate campaign", now)

        campaign = db.get(Campaign, campaign_id)
        anomaly = None
        if campaign is None:
            anomaly = f"Campaign {campaign_id} not found for paid order {order_id}"
        elif campaign.owner_user_id != payer:
            anomaly = f"Payer {payer} does not own campaign {campaign_id} (order {order_id})"

        if not self._claim(db, record, PAYMENT_SUCCESS, parsed, now):
            db.rollback()
            return WebhookResult(WebhookOutcome.ALREADY_PROCESSED, order_id)

        expires_at = None
        if anomaly is None:
            try:
                values = CampaignStateMachine.stage_paid_activation(db, campaign, order_id, plan_type, amount, now)
            except (PreconditionFailed, ValidationError):
                db.rollback()
                logger.warning("Activation of campaign %s for order %s aborted; record left pending", campaign_id, order_id)
                raise
            expires_at = values["expires_at"]
        db.commit()

        if anomaly is not None:
            logger.error("Payment recorded without activation: %s", anomaly)
            AuditService.log_best_effort(
                db,
                WebhookFailure(order_id=order_id, webhook_type=parsed.webhook_type, error=anomaly),
                actor_id=SYSTEM_ACTOR,
                description=anomaly,
            )
            return WebhookResult(WebhookOutcome.APPLIED, order_id, PAYMENT_SUCCESS, activated=False, detail=anomaly)

        logger.info("Payment success: order=%s campaign=%s active until %s", order_id, campaign_id, isoformat(expires_at))
        AuditService.log_best_effort(
            db,
            PaymentSuccess(
                order_id=order_id, user_id=payer, campaign_id=campaign_id, amount=amount,
                plan_type=plan_type, expires_at=expires_at, gateway_payment_id=parsed.gateway_payment_id,
            ),
            actor_id=SYSTEM_ACTOR,
            description=f"Payment successful for order {order_id} - Campaign activated",
        )
        return WebhookResult(WebhookOutcome.APPLIED, order_id, PAYMENT_SUCCESS, activated=True)
