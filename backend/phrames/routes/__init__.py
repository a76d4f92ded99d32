from phrames.routes.payment import router as payment_router
from phrames.routes.campaigns import router as campaigns_router
from phrames.routes.admin import router as admin_router

__all__ = ["payment_router", "campaigns_router", "admin_router"]
