"""
ManPower Ledger - Main FastAPI Application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from manpower.core.config import settings
from manpower.core.logging import setup_logging, get_logger
from manpower.core.middleware import setup_middleware, setup_exception_handlers
from manpower.api.routes import router as api_router
from manpower.api.routes.realtime import router as realtime_router
from manpower.db.database import engine, Base
from manpower.db import models  # noqa: F401  (registers tables on Base.metadata)
from manpower.domain.services.realtime import get_realtime_hub

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


_OPENAPI_TAGS = [
    {"name": "Payments", "description": "Payment intents, confirmation, withdrawals and the worker wallet."},
    {"name": "Admin", "description": "Payment oversight and withdrawal processing."},
    {"name": "Chat", "description": "Two-party conversations and messages."},
    {"name": "Notifications", "description": "In-app notifications."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Payment ledger, withdrawals, chat and notifications for the ManPower job marketplace.",
    openapi_tags=_OPENAPI_TAGS,
)

# Setup middleware (correlation ID, request logging)
setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS) or [settings.CLIENT_URL]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
)

app.include_router(api_router, prefix="/api")
app.include_router(realtime_router)


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables and the realtime listener"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")

    get_realtime_hub().start_listener()
    if not settings.STRIPE_SECRET_KEY:
        logger.warning("STRIPE_SECRET_KEY not set - payment intents will be refused")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    await get_realtime_hub().stop_listener()
    from manpower.core.redis_client import close_redis
    await close_redis()
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness check",
    description="Process is up and answering. External dependencies are not checked.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "service": settings.APP_NAME}
