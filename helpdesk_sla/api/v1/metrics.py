"""
Metrics API endpoints.

Prometheus export, JSON statistics and container probes.
"""

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from helpdesk_sla.core.config import settings
from helpdesk_sla.core.database import get_db
from helpdesk_sla.services.metrics_service import metrics_collector

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/metrics",
    summary="Prometheus Metrics",
    description="Export metrics in Prometheus text format for scraping",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics():
    """
    Export metrics in Prometheus format.

    Includes HTTP request counts and durations, SLA cycle counts and
    durations, fired warnings and escalations, detected breaches and
    per-ticket evaluation errors.
    """
    return Response(
        content=metrics_collector.get_prometheus_metrics(),
        media_type=metrics_collector.get_prometheus_content_type(),
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Pragma": "no-cache",
            "Expires": "0"
        }
    )


@router.get(
    "/metrics/stats",
    summary="JSON Statistics Summary",
    description="Request and SLA monitor statistics as JSON",
)
async def get_stats_summary():
    return metrics_collector.get_stats_summary()


@router.get(
    "/metrics/ready",
    summary="Readiness Check",
    description="Readiness probe: the database is reachable",
)
async def readiness_check(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning(f"Readiness check failed: {e}")
        return JSONResponse(
            content={"status": "not_ready", "reason": str(e)},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )
    return {"status": "ready"}


@router.get(
    "/metrics/live",
    summary="Liveness Check",
    description="Liveness probe",
)
async def liveness_check():
    return {"status": "alive"}


@router.get(
    "/metrics/info",
    summary="Application Info",
)
async def get_app_info():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "debug": settings.DEBUG,
        "features": {
            "prometheus_metrics": settings.ENABLE_PROMETHEUS_METRICS,
            "sla_scheduler": settings.SLA_SCHEDULER_ENABLED,
            "sla_check_interval_seconds": settings.SLA_CHECK_INTERVAL_SECONDS,
        }
    }
