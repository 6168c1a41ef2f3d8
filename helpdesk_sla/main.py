import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from helpdesk_sla.core.config import settings
from helpdesk_sla.core.database import engine
from helpdesk_sla.core.exceptions import SlaEngineError
from helpdesk_sla.core.sse import connection_manager
from helpdesk_sla.api.v1 import api_router
from helpdesk_sla.middleware.monitoring import (
    MonitoringMiddleware,
    configure_structured_logging,
    setup_db_event_listeners,
)
from helpdesk_sla.jobs.sla_batch import start_sla_scheduler, stop_sla_scheduler, get_sla_scheduler

# Configure structured logging
if settings.ENABLE_STRUCTURED_LOGGING:
    configure_structured_logging(
        log_level="DEBUG" if settings.DEBUG else "INFO",
        json_format=not settings.DEBUG  # JSON in production, plain text in debug
    )
else:
    logging.basicConfig(
        level=logging.INFO if not settings.DEBUG else logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Registers query monitoring and starts the SLA scheduler on startup,
    stops the scheduler on shutdown.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    setup_db_event_listeners(engine)

    if settings.SLA_SCHEDULER_ENABLED:
        try:
            await start_sla_scheduler()
        except Exception as e:
            logger.error(f"Failed to start SLA scheduler: {e}")
    else:
        logger.info("SLA scheduler disabled by configuration")

    yield

    logger.info(f"Shutting down {settings.APP_NAME}")

    try:
        await stop_sla_scheduler()
    except Exception as e:
        logger.error(f"Error stopping SLA scheduler: {e}")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Helpdesk SLA tracking and escalation API",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request monitoring middleware (outermost - runs first)
app.add_middleware(MonitoringMiddleware)


@app.exception_handler(SlaEngineError)
async def sla_engine_error_handler(request: Request, exc: SlaEngineError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, **exc.details},
    )


# Include API router
app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Reports SLA scheduler status (including staleness) and SSE connections.
    A stale scheduler marks the service as degraded.
    """
    sla_status = get_sla_scheduler().get_status()
    sse_stats = connection_manager.get_stats()

    return {
        "status": "degraded" if sla_status["stale"] else "healthy",
        "schedulers": {
            "sla": {
                "running": sla_status["running"],
                "busy": sla_status["busy"],
                "last_run": sla_status["last_run"],
                "last_success": sla_status["last_success"],
                "run_count": sla_status["run_count"],
                "error_count": sla_status["error_count"],
                "skipped_count": sla_status["skipped_count"],
                "stale": sla_status["stale"],
            }
        },
        "sse": {
            "total_connections": sse_stats["total_connections"],
            "users": sse_stats["users"]
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "helpdesk_sla.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
