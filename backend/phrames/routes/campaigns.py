"""
Campaign Routes — Free activation and public visibility.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from phrames.database import get_db
from phrames.errors import AuthenticationError, NotFoundError, ValidationError
from phrames.models.campaign import Campaign
from phrames.schemas.schemas import CampaignVisibility, ErrorResponse, FreeActivationRequest, FreeActivationResponse
from phrames.services.activation import CampaignStateMachine
from phrames.utils.timeutil import utcnow

router = APIRouter(prefix="/api/campaigns", tags=["Campaigns"], responses={404: {"model": ErrorResponse}})


@router.post("/activate-free", response_model=FreeActivationResponse)
def activate_free_campaign(
    payload: FreeActivationRequest,
    user_id: Optional[str] = Header(None, alias="user-id"),
    db: Session = Depends(get_db),
):
    """Use the caller's one complimentary activation on their campaign."""
    if not user_id:
        raise AuthenticationError("Unauthorized")
    if not payload.campaign_id:
        raise ValidationError("Missing required field: campaignId")

    result = CampaignStateMachine.activate_free(db, payload.campaign_id, user_id)
    return FreeActivationResponse(
        message="Free campaign activated successfully",
        expiresAt=result.after.get("expires_at"),
    )


@router.get("/{campaign_id}/visibility", response_model=CampaignVisibility)
def campaign_visibility(campaign_id: str, db: Session = Depends(get_db)):
    """Whether the campaign is publicly visible right now."""
    campaign = db.get(Campaign, campaign_id)
    if campaign is None:
        raise NotFoundError("Campaign not found")

    now = utcnow()
    return CampaignVisibility(
        campaignId=campaign.id,
        isActive=bool(campaign.is_active),
        status=campaign.status,
        isExpired=campaign.is_expired(now),
        visible=campaign.is_visible(now),
        planType=campaign.plan_type,
        expiresAt=campaign.expires_at,
    )
