from phrames.services.audit_service import AuditService
from phrames.services.activation import CampaignStateMachine
from phrames.services.payment_ledger import PaymentLedger
from phrames.services.expiry_sweep import ExpirySweep
from phrames.services.reconciliation import ReconciliationEngine

__all__ = ["AuditService", "CampaignStateMachine", "PaymentLedger", "ExpirySweep", "ReconciliationEngine"]
