"""
Pydantic Schemas — Request & Response models for API validation.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ──────────────── Payments ────────────────

class InitiatePaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    campaign_id: Optional[str] = Field(None, alias="campaignId")
    plan_type: Optional[str] = Field(None, alias="planType", description="week, month, 3month, 6month or year")


class InitiatePaymentResponse(BaseModel):
    success: bool = True
    orderId: str
    paymentSessionId: str


class WebhookResponse(BaseModel):
    success: bool = True
    outcome: str
    orderId: Optional[str] = None
    activated: bool = False


# ──────────────── Campaigns ────────────────

class FreeActivationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    campaign_id: Optional[str] = Field(None, alias="campaignId")


class FreeActivationResponse(BaseModel):
    success: bool = True
    message: str
    expiresAt: Optional[str] = None


class CampaignVisibility(BaseModel):
    campaignId: str
    isActive: bool
    status: Optional[str] = None
    isExpired: bool
    visible: bool
    planType: Optional[str] = None
    expiresAt: Optional[datetime] = None


# ──────────────── Admin ────────────────

class AdminActionRequest(BaseModel):
    """Flat admin request; which fields matter depends on ``action``."""

    model_config = ConfigDict(populate_by_name=True)

    action: Optional[str] = None
    actor_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("actorId", "adminId", "actor_id"),
    )
    campaign_id: Optional[str] = Field(None, validation_alias=AliasChoices("campaignId", "campaign_id"))
    order_id: Optional[str] = Field(None, validation_alias=AliasChoices("orderId", "order_id"))
    reason: Optional[str] = None
    days: Optional[int] = None
    expires_at: Optional[Any] = Field(None, validation_alias=AliasChoices("expiresAt", "expires_at"))
    mode: Optional[str] = None
    dry_run: bool = Field(False, validation_alias=AliasChoices("dryRun", "dry_run"))


class AdminActionResponse(BaseModel):
    success: bool
    message: str
    data: Dict[str, Any] = {}


class AuditLogEntry(BaseModel):
    id: int
    event_type: str
    actor_id: str
    description: Optional[str] = None
    metadata: Optional[Dict] = None
    created_at: datetime


class StuckCampaignEntry(BaseModel):
    kind: str
    campaign_id: str
    user_id: str
    campaign_name: str = ""
    order_id: Optional[str] = None
    plan_type: Optional[str] = None
    amount: int = 0


class StuckCampaignsResponse(BaseModel):
    count: int
    campaigns: List[StuckCampaignEntry] = []


# ──────────────── System ────────────────

class HealthResponse(BaseModel):
    status: str
    database: str
    gateway: str
    error_rate: float
    uptime_seconds: float
    version: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
