"""
Sample data seeding script for the helpdesk SLA engine.
Creates the schema, a default and a category-scoped SLA policy, and open
tickets at various ages, then runs one SLA monitor cycle over them.
"""
import asyncio
import random
import sys
from datetime import datetime, timedelta
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk_sla.core.database import AsyncSessionLocal, Base, engine
from helpdesk_sla.models.sla import SlaPolicy
from helpdesk_sla.models.ticket import Ticket, TicketPriority, TicketStatus
from helpdesk_sla.services.sla_monitor import SlaMonitor
from helpdesk_sla.services.sla_service import SlaService


DEFAULT_POLICY = {
    "name": "Standard Support",
    "description": "Default targets for every ticket without a more specific policy",
    "is_default": True,
    "warning_levels": [
        {"percentage": 50, "notify_users": ["team-lead"], "notify_channels": ["web"]},
        {"percentage": 80, "notify_users": ["team-lead"], "notify_channels": ["web", "email"]},
    ],
    "escalation_levels": [
        {"level": 1, "name": "Team lead", "percentage_threshold": 90, "action": "notify",
         "notify_users": ["team-lead"]},
        {"level": 2, "name": "Support manager", "percentage_threshold": 100, "action": "assign",
         "notify_users": ["support-manager"], "assign_to": "support-manager"},
    ],
    "auto_escalation_enabled": True,
    "escalate_on_resolution_breach": True,
}

NETWORK_POLICY = {
    "name": "Network Incidents",
    "description": "Tighter targets for network outages",
    "category": "network",
    "priorities": {
        "high": {"response_time_hours": 1, "resolution_time_hours": 8, "enabled": True},
        "urgent": {"response_time_hours": 0.5, "resolution_time_hours": 4, "enabled": True},
    },
    "warning_levels": [
        {"percentage": 25, "notify_users": ["noc-oncall"], "notify_channels": ["web", "telegram"]},
        {"percentage": 75, "notify_users": ["noc-oncall"], "notify_channels": ["web", "telegram"]},
    ],
    "escalation_levels": [
        {"level": 1, "name": "NOC on-call", "percentage_threshold": 50, "action": "alert",
         "notify_users": ["noc-oncall"]},
        {"level": 2, "name": "Network lead", "percentage_threshold": 100, "action": "escalate",
         "notify_users": ["network-lead"]},
    ],
    "auto_escalation_enabled": True,
    "escalate_on_response_breach": True,
}

TICKET_TITLES = [
    "VPN disconnects every hour",
    "Printer queue stuck",
    "Cannot log into email",
    "Core switch port flapping",
    "Laptop battery not charging",
    "Shared drive permissions missing",
    "Wi-Fi slow on 3rd floor",
    "Password reset request",
]

CATEGORIES = ["network", "hardware", "software", "access"]


async def create_schema():
    print("Creating tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("✓ Tables ready")


async def create_policies(db: AsyncSession):
    print("\nCreating SLA policies...")
    service = SlaService(db)

    for data in (DEFAULT_POLICY, NETWORK_POLICY):
        result = await db.execute(select(SlaPolicy).where(SlaPolicy.name == data["name"]))
        if result.scalar_one_or_none():
            print(f"  ✓ Policy already exists: {data['name']}")
            continue
        policy = await service.create_policy(data, created_by="seed-script")
        print(f"  ✓ Created policy: {policy.name}")


async def create_tickets(db: AsyncSession, num_tickets: int = 40):
    print(f"\nCreating {num_tickets} sample tickets...")
    now = datetime.utcnow()
    tickets = []

    for i in range(num_tickets):
        created_at = now - timedelta(hours=random.uniform(0, 120))
        status = random.choice([
            TicketStatus.OPEN, TicketStatus.OPEN, TicketStatus.IN_PROGRESS,
            TicketStatus.PENDING, TicketStatus.RESOLVED,
        ])
        ticket = Ticket(
            ticket_number=f"HD-{now:%Y%m%d}-{i + 1:04d}",
            title=random.choice(TICKET_TITLES),
            category=random.choice(CATEGORIES),
            priority=random.choice(list(TicketPriority)),
            status=status,
            created_at=created_at,
        )
        if status != TicketStatus.OPEN:
            ticket.first_response_at = created_at + timedelta(hours=random.uniform(0.2, 6))
        if status == TicketStatus.RESOLVED:
            ticket.resolved_at = min(now, created_at + timedelta(hours=random.uniform(2, 48)))
        db.add(ticket)
        tickets.append(ticket)

    await db.commit()
    print(f"✓ Created {len(tickets)} tickets")
    return tickets


async def main():
    """Main seeding function."""
    print("=" * 60)
    print("Helpdesk SLA Engine - Sample Data Seeding Script")
    print("=" * 60)

    await create_schema()

    async with AsyncSessionLocal() as db:
        await create_policies(db)
        tickets = await create_tickets(db)

    print("\nRunning one SLA monitor cycle...")
    monitor = SlaMonitor()
    summary = await monitor.run_cycle()
    await monitor.dispatcher.drain()

    print("\n" + "=" * 60)
    print("✓ Sample data seeding completed successfully!")
    print("=" * 60)
    print(f"  - {len(tickets)} tickets")
    print(f"  - {summary['tickets_checked']} checked, {summary['breaches_found']} breached")
    print(f"  - {summary['warnings_sent']} warnings, {summary['escalations_performed']} escalations")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
