"""
SLA API Endpoints

SLA policy management, ticket SLA status, breach reporting and monitor control.
Domain errors (not found, duplicate, invalid policy, busy scheduler) are
turned into JSON responses by the application's SlaEngineError handler.
"""

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
import logging

from helpdesk_sla.core.database import get_db
from helpdesk_sla.jobs.sla_batch import SlaJobScheduler, get_sla_scheduler
from helpdesk_sla.services.sla_service import SlaService
from helpdesk_sla.schemas.sla import (
    SchedulerStatusResponse,
    SlaBreachItem,
    SlaCycleSummary,
    SlaPolicyCreate,
    SlaPolicyResponse,
    SlaPolicyUpdate,
    SlaStatisticsResponse,
    TicketSlaStatusResponse,
)


logger = logging.getLogger(__name__)
router = APIRouter()


# ============================================================================
# SLA Policy Endpoints
# ============================================================================

@router.get("/policies", response_model=List[SlaPolicyResponse])
async def list_sla_policies(
    active_only: bool = Query(False, description="Only return active policies"),
    category: Optional[str] = Query(None, description="Filter by category"),
    db: AsyncSession = Depends(get_db)
):
    """List SLA policies, oldest first."""
    return await SlaService(db).list_policies(active_only=active_only, category=category)


@router.post("/policies", response_model=SlaPolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_sla_policy(
    policy_data: SlaPolicyCreate,
    db: AsyncSession = Depends(get_db)
):
    """
    Create a new SLA policy.

    Priorities left out of the request get the standard targets
    (low 48/120h, medium 24/72h, high 4/24h, urgent 1/8h).
    """
    return await SlaService(db).create_policy(policy_data.model_dump())


@router.get("/policies/{policy_id}", response_model=SlaPolicyResponse)
async def get_sla_policy(
    policy_id: str,
    db: AsyncSession = Depends(get_db)
):
    return await SlaService(db).get_policy(policy_id)


@router.patch("/policies/{policy_id}", response_model=SlaPolicyResponse)
async def update_sla_policy(
    policy_id: str,
    policy_data: SlaPolicyUpdate,
    db: AsyncSession = Depends(get_db)
):
    """Update an SLA policy. Escalation and warning level lists are replaced as a whole."""
    return await SlaService(db).update_policy(
        policy_id,
        policy_data.model_dump(exclude_unset=True),
    )


@router.delete("/policies/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sla_policy(
    policy_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Deactivate an SLA policy (soft delete)."""
    await SlaService(db).deactivate_policy(policy_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/policies/{policy_id}/default", response_model=SlaPolicyResponse)
async def set_default_sla_policy(
    policy_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Make this policy the default; every other policy loses the flag."""
    return await SlaService(db).set_default_policy(policy_id)


# ============================================================================
# Ticket SLA Endpoints
# ============================================================================

@router.get("/tickets/{ticket_id}", response_model=TicketSlaStatusResponse)
async def get_ticket_sla_status(
    ticket_id: str,
    db: AsyncSession = Depends(get_db)
):
    """
    Get the live SLA status of a ticket.

    Recomputed on every call; nothing is written.
    """
    return await SlaService(db).get_status(ticket_id)


@router.post("/tickets/{ticket_id}/assign", response_model=TicketSlaStatusResponse)
async def assign_ticket_sla(
    ticket_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Re-resolve the ticket's policy and store a fresh SLA snapshot."""
    service = SlaService(db)
    await service.assign_sla(ticket_id)
    return await service.get_status(ticket_id)


@router.get("/breaches", response_model=List[SlaBreachItem])
async def list_sla_breaches(db: AsyncSession = Depends(get_db)):
    """Open tickets currently in breach."""
    return await SlaService(db).list_breaches()


@router.get("/statistics", response_model=SlaStatisticsResponse)
async def get_sla_statistics(
    days: int = Query(30, ge=1, le=365, description="Look-back window in days"),
    db: AsyncSession = Depends(get_db)
):
    return await SlaService(db).get_statistics(days=days)


# ============================================================================
# Monitor Endpoints
# ============================================================================

@router.post("/monitor/run", response_model=SlaCycleSummary)
async def run_sla_monitor(scheduler: SlaJobScheduler = Depends(get_sla_scheduler)):
    """
    Run one SLA monitor cycle now.

    Returns 409 when a cycle is already running.
    """
    logger.info("Manual SLA check requested")
    return await scheduler.run_sla_check()


@router.get("/scheduler/status", response_model=SchedulerStatusResponse)
async def get_scheduler_status(scheduler: SlaJobScheduler = Depends(get_sla_scheduler)):
    return scheduler.get_status()
