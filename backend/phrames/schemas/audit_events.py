"""
Audit Event Schemas — One fixed metadata schema per event type.

``AuditEvent`` is a discriminated union on ``event_type``; AuditService
persists ``event_type`` as its own column and the remaining fields as the
entry's metadata, so a log row can always be parsed back into its variant.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class AuditEventType(str, Enum):
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILURE = "payment_failure"
    WEBHOOK_FAILURE = "webhook_failure"
    CAMPAIGN_FREE_ACTIVATED = "campaign_free_activated"
    CAMPAIGN_DEACTIVATED = "campaign_deactivated"
    CAMPAIGN_REACTIVATED = "campaign_reactivated"
    CAMPAIGN_EXTENDED = "campaign_extended"
    CAMPAIGN_EXPIRY_SET = "campaign_expiry_set"
    CAMPAIGN_DELETED = "campaign_deleted"
    CAMPAIGN_MANUAL_ACTIVATION = "campaign_manual_activation"
    CAMPAIGN_FREE_RECOVERED = "campaign_free_recovered"
    ORPHAN_CLEANUP = "orphan_cleanup"
    MANUAL_CRON_TRIGGER = "manual_cron_trigger"
    DATA_EXPORT = "data_export"


class _Event(BaseModel):
    model_config = {"frozen": True}


# ──────────────── Payments ────────────────

class PaymentInitiated(_Event):
    event_type: Literal["payment_initiated"] = "payment_initiated"
    order_id: str
    gateway_order_id: str
    campaign_id: str
    amount: int
    plan_type: str


class PaymentSuccess(_Event):
    event_type: Literal["payment_success"] = "payment_success"
    order_id: str
    user_id: str
    campaign_id: str
    amount: int
    plan_type: str
    expires_at: Optional[datetime] = None
    gateway_payment_id: Optional[str] = None


class PaymentFailure(_Event):
    event_type: Literal["payment_failure"] = "payment_failure"
    order_id: str
    user_id: str
    campaign_id: str
    amount: int
    plan_type: str
    reason: str = "Unknown"


class WebhookFailure(_Event):
    event_type: Literal["webhook_failure"] = "webhook_failure"
    order_id: Optional[str] = None
    webhook_type: Optional[str] = None
    error: str


# ──────────────── Campaign transitions ────────────────

class CampaignFreeActivated(_Event):
    event_type: Literal["campaign_free_activated"] = "campaign_free_activated"
    campaign_id: str
    user_id: str
    expires_at: datetime


class CampaignDeactivated(_Event):
    event_type: Literal["campaign_deactivated"] = "campaign_deactivated"
    campaign_id: str
    campaign_name: str = ""
    reason: Optional[str] = None


class CampaignReactivated(_Event):
    event_type: Literal["campaign_reactivated"] = "campaign_reactivated"
    campaign_id: str
    campaign_name: str = ""
    was_active: bool
    previous_expires_at: Optional[datetime] = None
    new_expires_at: datetime


class CampaignExtended(_Event):
    event_type: Literal["campaign_extended"] = "campaign_extended"
    campaign_id: str
    campaign_name: str = ""
    previous_expires_at: Optional[datetime] = None
    new_expires_at: datetime
    days: int


class CampaignExpirySet(_Event):
    event_type: Literal["campaign_expiry_set"] = "campaign_expiry_set"
    campaign_id: str
    campaign_name: str = ""
    previous_expires_at: Optional[datetime] = None
    new_expires_at: datetime


class CampaignDeleted(_Event):
    event_type: Literal["campaign_deleted"] = "campaign_deleted"
    campaign_id: str
    campaign_name: str = ""
    owner_user_id: str


# ──────────────── Recovery ────────────────

class CampaignManualActivation(_Event):
    event_type: Literal["campaign_manual_activation"] = "campaign_manual_activation"
    campaign_id: str
    order_id: str
    user_id: str
    amount: int
    plan_type: str
    expires_at: datetime
    source: Literal["fix_stuck", "fix_single"] = "fix_stuck"


class CampaignFreeRecovered(_Event):
    event_type: Literal["campaign_free_recovered"] = "campaign_free_recovered"
    campaign_id: str
    user_id: str
    expires_at: datetime


class OrphanCleanup(_Event):
    event_type: Literal["orphan_cleanup"] = "orphan_cleanup"
    deleted_payments: int
    deleted_expiry_logs: int
    campaign_ids: List[str] = Field(default_factory=list)


# ──────────────── Operator jobs ────────────────

class ManualCronTrigger(_Event):
    event_type: Literal["manual_cron_trigger"] = "manual_cron_trigger"
    job: str
    batch_id: str
    processed: int


class DataExport(_Event):
    event_type: Literal["data_export"] = "data_export"
    export_type: Literal["payments", "campaigns"]
    record_count: int


AuditEvent = Annotated[
    Union[
        PaymentInitiated,
        PaymentSuccess,
        PaymentFailure,
        WebhookFailure,
        CampaignFreeActivated,
        CampaignDeactivated,
        CampaignReactivated,
        CampaignExtended,
        CampaignExpirySet,
        CampaignDeleted,
        CampaignManualActivation,
        CampaignFreeRecovered,
        OrphanCleanup,
        ManualCronTrigger,
        DataExport,
    ],
    Field(discriminator="event_type"),
]

_adapter = TypeAdapter(AuditEvent)


def parse_event(event_type: str, metadata: dict) -> BaseModel:
    """Rebuild the typed event from a stored row."""
    return _adapter.validate_python({**(metadata or {}), "event_type": event_type})
