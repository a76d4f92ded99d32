"""
Admin Action Dispatcher — The closed set of operator actions.

State changes commit before the audit write is attempted; a failed audit
write is logged and never undoes the change.
"""
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from sqlalchemy.orm import Session

from phrames.config import get_settings
from phrames.errors import InvalidAction, ValidationError
from phrames.schemas.audit_events import DataExport, ManualCronTrigger
from phrames.schemas.schemas import AdminActionRequest
from phrames.services.activation import CampaignStateMachine, TransitionResult
from phrames.services.audit_service import AuditService
from phrames.services.expiry_sweep import ExpirySweep
from phrames.services.exports import export_campaigns, export_payments
from phrames.services.reconciliation import ReconciliationEngine
from phrames.utils.timeutil import to_utc

logger = logging.getLogger(__name__)


class AdminAction(str, Enum):
    DEACTIVATE = "deactivate"
    REACTIVATE = "reactivate"
    EXTEND = "extend"
    SET_EXPIRY = "setExpiry"
    DELETE = "delete"
    TRIGGER_EXPIRY_CRON = "triggerExpiryCron"
    FIX_STUCK_CAMPAIGNS = "fixStuckCampaigns"
    EXPORT_PAYMENTS = "exportPayments"
    EXPORT_CAMPAIGNS = "exportCampaigns"


class FixMode(str, Enum):
    ALL = "all"
    SINGLE = "single"
    CLEANUP_ORPHANED = "cleanup-orphaned"


@dataclass
class AdminResult:
    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CsvExport:
    filename: str
    content: str
    record_count: int


class AdminActionDispatcher:
    def __init__(self, sweep: ExpirySweep, reconciliation: ReconciliationEngine, page_size: int = 500):
        self.sweep = sweep
        self.reconciliation = reconciliation
        self.page_size = page_size
        self._handlers: Dict[AdminAction, Callable[[Session, AdminActionRequest], Union[AdminResult, CsvExport]]] = {
            AdminAction.DEACTIVATE: self._deactivate,
            AdminAction.REACTIVATE: self._reactivate,
            AdminAction.EXTEND: self._extend,
            AdminAction.SET_EXPIRY: self._set_expiry,
            AdminAction.DELETE: self._delete,
            AdminAction.TRIGGER_EXPIRY_CRON: self._trigger_expiry,
            AdminAction.FIX_STUCK_CAMPAIGNS: self._fix_stuck,
            AdminAction.EXPORT_PAYMENTS: self._export_payments,
            AdminAction.EXPORT_CAMPAIGNS: self._export_campaigns,
        }

    def dispatch(self, db: Session, request: AdminActionRequest) -> Union[AdminResult, CsvExport]:
        if not request.action or not request.actor_id:
            raise ValidationError("Missing required fields")
        try:
            action = AdminAction(request.action)
        except ValueError:
            raise InvalidAction("Invalid action", action=request.action) from None

        logger.info("Admin action %s by %s (campaign=%s)", action.value, request.actor_id, request.campaign_id)
        return self._handlers[action](db, request)

    # ─── Campaign transitions ────────────────────────────────────────

    @staticmethod
    def _campaign_id(request: AdminActionRequest) -> str:
        if not request.campaign_id:
            raise ValidationError("Missing required field: campaignId")
        return request.campaign_id

    @staticmethod
    def _expiry_param(request: AdminActionRequest):
        try:
            return to_utc(request.expires_at)
        except ValueError as exc:
            raise ValidationError(f"Invalid expiresAt: {exc}") from exc

    @staticmethod
    def _transition_result(result: TransitionResult, message: str) -> AdminResult:
        return AdminResult(True, message if result.changed else f"No change: {result.reason}", asdict(result))

    def _deactivate(self, db, request):
        result = CampaignStateMachine.deactivate(db, self._campaign_id(request), request.actor_id, request.reason)
        return self._transition_result(result, "Campaign deactivated")

    def _reactivate(self, db, request):
        result = CampaignStateMachine.reactivate(
            db, self._campaign_id(request), request.actor_id, expires_at=self._expiry_param(request),
        )
        return self._transition_result(result, "Campaign reactivated")

    def _extend(self, db, request):
        days = request.days if request.days is not None else get_settings().EXTEND_DEFAULT_DAYS
        result = CampaignStateMachine.extend(db, self._campaign_id(request), request.actor_id, days)
        return self._transition_result(result, f"Campaign extended by {days} day(s)")

    def _set_expiry(self, db, request):
        expires_at = self._expiry_param(request)
        if expires_at is None:
            raise ValidationError("Missing expiresAt date")
        result = CampaignStateMachine.set_expiry(db, self._campaign_id(request), request.actor_id, expires_at)
        return self._transition_result(result, "Campaign expiry updated")

    def _delete(self, db, request):
        result = CampaignStateMachine.delete(db, self._campaign_id(request), request.actor_id)
        return self._transition_result(result, "Campaign deleted")

    # ─── Batch jobs ──────────────────────────────────────────────────

    def _trigger_expiry(self, db, request):
        result = self.sweep.run(db, manual=True)
        AuditService.log_best_effort(
            db,
            ManualCronTrigger(job="campaign-expiry", batch_id=result.batch_id, processed=result.processed),
            actor_id=request.actor_id,
            description=f"Manually triggered campaign-expiry ({result.processed} expired)",
        )
        return AdminResult(True, f"Expired {result.processed} campaigns", asdict(result))

    def _fix_stuck(self, db, request):
        try:
            mode = FixMode(request.mode or FixMode.ALL.value)
        except ValueError:
            raise ValidationError(f"Invalid mode: {request.mode}") from None

        if mode is FixMode.SINGLE:
            result = self.reconciliation.fix_single(
                db, self._campaign_id(request), request.actor_id, order_id=request.order_id,
            )
            message = "Campaign fixed" if result.fixed else f"Campaign not fixed: {result.reason}"
            return AdminResult(True, message, result.to_dict())

        if mode is FixMode.CLEANUP_ORPHANED:
            result = self.reconciliation.cleanup_orphaned(db, request.actor_id, dry_run=request.dry_run)
            return AdminResult(
                True,
                f"Removed {result.deleted_payments} payment record(s) and "
                f"{result.deleted_expiry_logs} expiry log(s) for deleted campaigns",
                asdict(result),
            )

        summary = self.reconciliation.fix_stuck_campaigns(db, request.actor_id, dry_run=request.dry_run)
        verb = "Would fix" if summary.dry_run else "Fixed"
        return AdminResult(
            True,
            f"{verb} {summary.fixed} of {summary.found} stuck campaign(s)",
            {
                "found": summary.found,
                "fixed": summary.fixed,
                "skipped": summary.skipped,
                "dryRun": summary.dry_run,
                "results": [r.to_dict() for r in summary.results],
            },
        )

    # ─── Exports ─────────────────────────────────────────────────────

    def _export(self, db, request, export_type: str, exporter) -> CsvExport:
        content, count = exporter(db, self.page_size)
        AuditService.log_best_effort(
            db,
            DataExport(export_type=export_type, record_count=count),
            actor_id=request.actor_id,
            description=f"Exported {count} {export_type}",
        )
        return CsvExport(f"{export_type}-{int(time.time() * 1000)}.csv", content, count)

    def _export_payments(self, db, request):
        return self._export(db, request, "payments", export_payments)

    def _export_campaigns(self, db, request):
        return self._export(db, request, "campaigns", export_campaigns)
