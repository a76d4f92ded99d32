"""
Phrames Campaign API — FastAPI Application Entry Point

Aggregates all routers, configures middleware and error rendering,
and initializes the database on startup.
"""
import logging
import time
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from phrames.database import get_db, init_db
from phrames.errors import PhramesError
from phrames.logging_config import configure_logging
from phrames.routes import admin_router, campaigns_router, payment_router
from phrames.schemas.schemas import HealthResponse
from phrames.services.container import ServiceContainer

logger = logging.getLogger(__name__)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the application around ``container`` (a default one if omitted)."""
    container = container or ServiceContainer()
    settings = container.settings

    # ─── Application Instance ───────────────────────────────────────
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=(
            "Campaign payments and visibility lifecycle: order initiation, gateway webhooks, "
            "free activation, expiry sweeps, reconciliation of stuck campaigns and operator actions."
        ),
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.container = container
    app.state.boot_time = time.time()

    # ─── Startup / Shutdown ─────────────────────────────────────────
    @app.on_event("startup")
    def on_startup():
        """Initialize logging and database tables."""
        configure_logging(settings)
        init_db()
        logger.info(
            "%s v%s started (database=%s, gateway=%s, debug=%s)",
            settings.APP_NAME, settings.APP_VERSION, settings.DATABASE_URL,
            "configured" if container.gateway.configured else "not configured",
            settings.DEBUG,
        )

    @app.on_event("shutdown")
    def on_shutdown():
        container.close()

    # ─── Middleware ─────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log every API request with timing. Errors are counted by the
        operation trackers in the routes."""
        start = time.time()
        is_api = request.url.path.startswith("/api")
        if is_api:
            container.metrics.errors.record_request()
        response = await call_next(request)
        duration = round((time.time() - start) * 1000, 1)

        if is_api:
            logger.info("%s %s -> %s (%sms)", request.method, request.url.path, response.status_code, duration)
        return response

    # ─── Error Rendering ────────────────────────────────────────────
    @app.exception_handler(PhramesError)
    async def handle_domain_error(request: Request, exc: PhramesError):
        if exc.status_code >= 500:
            logger.error("%s on %s: %s %s", type(exc).__name__, request.url.path, exc.message, exc.context)
        else:
            logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.client_message()})

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = f"Invalid {field}: {first.get('msg')}" if field else "Invalid request"
        return JSONResponse(status_code=400, content={"success": False, "error": message})

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})

    # ─── API Routers ────────────────────────────────────────────────
    app.include_router(payment_router)
    app.include_router(campaigns_router)
    app.include_router(admin_router)

    @app.get("/health", tags=["Health"], response_model=HealthResponse)
    def deep_health(db: Session = Depends(get_db)):
        """Detailed health check including dependency statuses."""
        db_ok = False
        try:
            db.execute(text("SELECT 1"))
            db_ok = True
        except SQLAlchemyError:
            logger.exception("Health check could not reach the database")

        return {
            "status": "healthy" if db_ok else "degraded",
            "database": "connected" if db_ok else "disconnected",
            "gateway": "configured" if container.gateway.configured else "not configured",
            "error_rate": container.metrics.snapshot()["error_rate"],
            "uptime_seconds": round(time.time() - app.state.boot_time, 1),
            "version": settings.APP_VERSION,
        }

    return app


app = create_app()
