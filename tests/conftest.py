"""
SLA Engine Test Configuration

Provides shared fixtures for async testing with:
- In-memory SQLite database
- Test client with async support
- A monitor and scheduler bound to the test database
- Sample data factories for tickets, SLA policies and ledger events
"""
from datetime import datetime, timedelta
from typing import AsyncGenerator, List, Optional
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from helpdesk_sla.core.database import Base, get_db
from helpdesk_sla.jobs.sla_batch import SlaJobScheduler, get_sla_scheduler
from helpdesk_sla.main import app
from helpdesk_sla.models.ticket import Ticket, TicketStatus, TicketPriority
from helpdesk_sla.models.sla import (
    SlaPolicy, SlaEscalationLevel, SlaWarningLevel, SlaEvent, SlaEventKind,
    EscalationAction, default_priority_rules,
)
from helpdesk_sla.services.notification_dispatch import NotificationDispatcher, SlaNotification
from helpdesk_sla.services.sla_monitor import SlaMonitor
from helpdesk_sla.services.sla_policy import (
    PolicyConfig, PriorityRule, EscalationLevelConfig, WarningLevelConfig, AutoEscalationConfig,
)


# Test database URL - SQLite in-memory with async support
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Reference creation time used across tests
T0 = datetime(2026, 1, 5, 9, 0, 0)


def hours(n: float) -> timedelta:
    return timedelta(hours=n)


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create an async engine for testing with in-memory SQLite."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(async_engine):
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


class RecordingDispatcher(NotificationDispatcher):
    """Dispatcher that keeps every delivered notification."""

    def __init__(self):
        super().__init__()
        self.delivered: List[SlaNotification] = []

    async def deliver(self, notification: SlaNotification):
        self.delivered.append(notification)

    def of_type(self, event_type: str) -> List[SlaNotification]:
        return [n for n in self.delivered if n.event_type == event_type]


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def monitor(session_factory, dispatcher) -> SlaMonitor:
    return SlaMonitor(session_factory=session_factory, dispatcher=dispatcher)


@pytest.fixture
def scheduler(monitor) -> SlaJobScheduler:
    return SlaJobScheduler(interval_seconds=60, monitor=monitor)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, scheduler: SlaJobScheduler) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database and scheduler overrides."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sla_scheduler] = lambda: scheduler

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def fetch_ticket(session_factory, ticket_id: str) -> Ticket:
    """Load a ticket in a new session, bypassing any stale identity map."""
    async with session_factory() as session:
        return await session.get(Ticket, ticket_id)


# -----------------------------------------------------------------------------
# In-memory builders (no database)
# -----------------------------------------------------------------------------

def make_ticket(
    priority: TicketPriority = TicketPriority.MEDIUM,
    status: TicketStatus = TicketStatus.OPEN,
    created_at: datetime = T0,
    **kwargs
) -> Ticket:
    return Ticket(
        id=kwargs.pop("id", str(uuid.uuid4())),
        ticket_number=kwargs.pop("ticket_number", f"HD-{uuid.uuid4().hex[:8].upper()}"),
        title=kwargs.pop("title", "Test ticket"),
        priority=priority,
        status=status,
        created_at=created_at,
        is_deleted=kwargs.pop("is_deleted", False),
        **kwargs
    )


def make_policy(
    escalation_levels=(),
    warning_levels=(),
    warnings_enabled: bool = True,
    auto_escalation: Optional[AutoEscalationConfig] = None,
    priorities=None,
    **kwargs
) -> PolicyConfig:
    if priorities is None:
        priorities = {
            name: PriorityRule(rule["response_time_hours"], rule["resolution_time_hours"])
            for name, rule in default_priority_rules().items()
        }
    return PolicyConfig(
        id=kwargs.pop("id", str(uuid.uuid4())),
        name=kwargs.pop("name", "Test policy"),
        priorities=priorities,
        escalation_levels=tuple(escalation_levels),
        warnings_enabled=warnings_enabled,
        warning_levels=tuple(warning_levels),
        auto_escalation=auto_escalation or AutoEscalationConfig(enabled=True),
        **kwargs
    )


def level(number: int, threshold: int, action: str = "notify", **kwargs) -> EscalationLevelConfig:
    return EscalationLevelConfig(
        level=number,
        name=kwargs.pop("name", f"Level {number}"),
        percentage_threshold=threshold,
        action=action,
        **kwargs
    )


def warning(percentage: int, **kwargs) -> WarningLevelConfig:
    return WarningLevelConfig(percentage=percentage, **kwargs)


# -----------------------------------------------------------------------------
# Data Factories
# -----------------------------------------------------------------------------

class SlaPolicyFactory:
    """Factory for creating test SLA policies."""

    @staticmethod
    async def create(
        db: AsyncSession,
        name: str = None,
        category: str = None,
        is_default: bool = False,
        is_active: bool = True,
        priorities: dict = None,
        escalation_levels: list = None,
        warning_levels: list = None,
        warnings_enabled: bool = True,
        auto_escalation_enabled: bool = True,
        escalate_on_response_breach: bool = False,
        escalate_on_resolution_breach: bool = True,
        created_at: datetime = None
    ) -> SlaPolicy:
        policy = SlaPolicy(
            id=str(uuid.uuid4()),
            name=name or f"Policy {uuid.uuid4().hex[:6]}",
            category=category,
            priorities=priorities or default_priority_rules(),
            warnings_enabled=warnings_enabled,
            auto_escalation_enabled=auto_escalation_enabled,
            escalate_on_response_breach=escalate_on_response_breach,
            escalate_on_resolution_breach=escalate_on_resolution_breach,
            auto_escalation_level=1,
            is_active=is_active,
            is_default=is_default,
            created_at=created_at or datetime.utcnow(),
        )
        policy.escalation_levels = [
            SlaEscalationLevel(
                level=item["level"],
                name=item.get("name", f"Level {item['level']}"),
                percentage_threshold=item["percentage_threshold"],
                action=EscalationAction(item.get("action", "notify")),
                notify_users=item.get("notify_users", []),
                assign_to=item.get("assign_to"),
            )
            for item in (escalation_levels or [])
        ]
        policy.warning_levels = [
            SlaWarningLevel(
                percentage=item["percentage"],
                notify_users=item.get("notify_users", []),
                notify_channels=item.get("notify_channels", ["web"]),
            )
            for item in (warning_levels or [])
        ]
        db.add(policy)
        await db.commit()
        return policy


class TicketFactory:
    """Factory for creating test tickets."""

    @staticmethod
    async def create(
        db: AsyncSession,
        priority: TicketPriority = TicketPriority.MEDIUM,
        status: TicketStatus = TicketStatus.OPEN,
        created_at: datetime = T0,
        category: str = None,
        sla_policy_id: str = None,
        first_response_at: datetime = None,
        **kwargs
    ) -> Ticket:
        ticket = Ticket(
            id=str(uuid.uuid4()),
            ticket_number=f"HD-{uuid.uuid4().hex[:8].upper()}",
            title=kwargs.pop("title", "Printer on fire"),
            category=category,
            priority=priority,
            status=status,
            created_at=created_at,
            sla_policy_id=sla_policy_id,
            first_response_at=first_response_at,
            **kwargs
        )
        db.add(ticket)
        await db.commit()
        return ticket


class SlaEventFactory:
    """Factory for creating ledger rows."""

    @staticmethod
    async def create(
        db: AsyncSession,
        ticket: Ticket,
        kind: SlaEventKind,
        identifier: int,
        percentage: int = None,
        fired_at: datetime = None
    ) -> SlaEvent:
        event = SlaEvent(
            ticket_id=ticket.id,
            kind=kind,
            identifier=identifier,
            percentage=identifier if percentage is None else percentage,
            notify_users=[],
            notify_channels=[],
            fired_at=fired_at or T0,
        )
        db.add(event)
        await db.commit()
        return event
