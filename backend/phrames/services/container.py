"""
Service Container — Owns the process-wide collaborators (settings, gateway
client, metrics, rate limiter) and builds the services that need them.
"""
from typing import Optional

import httpx
from fastapi import Request

from phrames.config import Settings, get_settings
from phrames.services.admin_dispatcher import AdminActionDispatcher
from phrames.services.expiry_sweep import ExpirySweep
from phrames.services.gateway import CashfreeClient
from phrames.services.metrics import Metrics
from phrames.services.payment_ledger import PaymentLedger
from phrames.services.reconciliation import ReconciliationEngine
from phrames.utils.rate_limiter import RateLimiter


class ServiceContainer:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        gateway: Optional[CashfreeClient] = None,
        gateway_transport: Optional[httpx.BaseTransport] = None,
        metrics: Optional[Metrics] = None,
    ):
        self.settings = settings or get_settings()
        self.gateway = gateway or CashfreeClient.from_settings(self.settings, transport=gateway_transport)
        self.metrics = metrics or Metrics()
        self.rate_limiter = RateLimiter()

        self.ledger = PaymentLedger(self.gateway)
        self.sweep = ExpirySweep(
            chunk_size=self.settings.EXPIRY_CHUNK_SIZE,
            batch_limit=self.settings.STORE_BATCH_LIMIT,
        )
        self.reconciliation = ReconciliationEngine(batch_limit=self.settings.STORE_BATCH_LIMIT)
        self.dispatcher = AdminActionDispatcher(
            sweep=self.sweep,
            reconciliation=self.reconciliation,
            page_size=self.settings.EXPORT_PAGE_SIZE,
        )

    def close(self) -> None:
        self.gateway.close()


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency: the container the app was built with."""
    return request.app.state.container
