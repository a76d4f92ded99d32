"""
Payment Routes — Order initiation and gateway webhooks.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from phrames.config import get_settings
from phrames.database import get_db
from phrames.errors import AuthenticationError, ValidationError
from phrames.schemas.schemas import ErrorResponse, InitiatePaymentRequest, InitiatePaymentResponse, WebhookResponse
from phrames.services.container import ServiceContainer, get_container
from phrames.utils.hashing import verify_webhook_signature
from phrames.utils.rate_limiter import rate_limit

logger = logging.getLogger(__name__)

settings = get_settings()

router = APIRouter(
    prefix="/api/payments",
    tags=["Payments"],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)


@router.post("/initiate", response_model=InitiatePaymentResponse)
def initiate_payment(
    payload: InitiatePaymentRequest,
    user_id: Optional[str] = Header(None, alias="user-id"),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
    _throttle: bool = Depends(rate_limit(requests=settings.INITIATE_RATE_LIMIT, window=settings.INITIATE_RATE_WINDOW)),
):
    """Create a gateway order for a paid plan and record it as pending."""
    if not user_id:
        raise AuthenticationError("Unauthorized")
    with container.metrics.track("payments.initiate"):
        order = container.ledger.initiate_order(db, payload.campaign_id, payload.plan_type, user_id)
    return InitiatePaymentResponse(**order)


def _apply_webhook(container: ServiceContainer, db: Session, payload):
    with container.metrics.track("payments.webhook"):
        return container.ledger.apply_webhook(db, payload)


@router.post("/webhook", response_model=WebhookResponse)
async def payment_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None, alias="x-webhook-signature"),
    x_webhook_timestamp: Optional[str] = Header(None, alias="x-webhook-timestamp"),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Apply a payment outcome pushed by the gateway.

    Replays, orphans and non-terminal events still answer 200 so the gateway
    stops retrying; a 409 means the campaign changed mid-activation and the
    delivery should be retried.
    """
    raw_body = await request.body()

    if container.settings.WEBHOOK_VERIFY_SIGNATURE:
        if not verify_webhook_signature(
            raw_body, x_webhook_signature, x_webhook_timestamp, container.settings.CASHFREE_CLIENT_SECRET,
        ):
            logger.warning("Webhook rejected: invalid signature")
            raise AuthenticationError("Invalid signature")

    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError as exc:
        raise ValidationError("Invalid JSON payload") from exc

    logger.info("Webhook received: type=%s", payload.get("type") if isinstance(payload, dict) else None)
    result = await run_in_threadpool(_apply_webhook, container, db, payload)

    return WebhookResponse(
        success=True,
        outcome=result.outcome.value,
        orderId=result.order_id,
        activated=result.activated,
    )
