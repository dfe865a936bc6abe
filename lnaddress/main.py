from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import logging

from lnaddress.routes import admin, lnurl, settlement
from lnaddress.schemas import HealthCheckResponse
from lnaddress.services.receipts import receipt_queue
from lnaddress.services.scheduler import settlement_scheduler
from lnaddress.services.startup import startup_manager
from lnaddress.services.nostr_keys import nostr_signer
from config import settings

VERSION = "0.1.0"

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown"""

    # Startup
    logger.info("Starting lightning address service...")

    startup_status = await startup_manager.run_startup_checks()

    if startup_status["status"] == "degraded":
        # Log critical errors but continue running (some issues may be non-critical)
        logger.warning("Application started with some issues - check logs above")

    # Receipt workers first so settlements found at startup can be enqueued
    receipt_queue.start()
    try:
        # Receipts left unpublished by a previous run
        receipt_queue.enqueue_unpublished()
    except Exception as e:
        logger.error(f"Failed to re-enqueue unpublished zap receipts: {str(e)}")
    settlement_scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down lightning address service...")

    await settlement_scheduler.stop()
    await receipt_queue.stop()
    logger.info("Application shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Lightning Address Zap Service",
    description="Lightning address (LNURL-pay) service with Nostr zap receipts",
    version=VERSION,
    lifespan=lifespan
)

# Add CORS middleware conditionally
if settings.CORS_ENABLED:
    logger.info(f"CORS enabled with origins: {settings.CORS_ORIGINS}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.cors_methods_list,
        allow_headers=settings.cors_headers_list,
    )
else:
    logger.info("CORS disabled - assuming handled by nginx/webserver")

# Include routers
app.include_router(lnurl.router)
app.include_router(settlement.router)
app.include_router(admin.router)


@app.exception_handler(StarletteHTTPException)
async def not_found_handler(request: Request, exc: StarletteHTTPException):
    """Plain text 404 for unknown routes; everything else keeps the default handling"""
    if exc.status_code == 404 and exc.detail == "Not Found":
        uri = request.url.path
        if request.url.query:
            uri = f"{uri}?{request.url.query}"
        return PlainTextResponse(f"No route for {uri}", status_code=404)
    return await http_exception_handler(request, exc)


@app.get("/health-check", tags=["health"], response_model=HealthCheckResponse, summary="Liveness check")
async def health_check():
    """Liveness only; no dependency is checked"""
    return HealthCheckResponse(status="pass", version=VERSION)


@app.get("/health", tags=["health"], summary="Detailed health check")
async def health():
    """
    Detailed health check endpoint

    Returns startup check results, background task state and database counts
    per invoice state.
    """
    startup_status = startup_manager.get_startup_status()

    return {
        "status": startup_status["status"],
        "uptime_seconds": int(startup_status["uptime_seconds"]),
        "startup_checks": {
            "passed": startup_status["checks_passed"],
            "total": startup_status["total_checks"],
            "details": startup_status["checks"],
            "errors": startup_status["errors"]
        },
        "scheduler_running": settlement_scheduler.is_running,
        "receipt_queue": {
            "running": receipt_queue.is_running,
            "workers": receipt_queue.workers,
            "pending": receipt_queue.pending
        },
        "domain": settings.DOMAIN,
        "features": {
            "zaps_enabled": nostr_signer.is_enabled(),
            "settlement_stream_enabled": settings.SETTLEMENT_STREAM_ENABLED,
            "cors_enabled": settings.CORS_ENABLED
        },
        "database": startup_manager.get_database_info()
    }
