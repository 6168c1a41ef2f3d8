"""
Tests for SlaService

Tests cover:
- Live ticket SLA status
- SLA assignment snapshot and metrics
- Breach listing and statistics
- SLA policy management (create, update, deactivate, default)
"""
import pytest

from helpdesk_sla.core.exceptions import (
    DuplicatePolicyError,
    InvalidPolicyError,
    PolicyNotFoundError,
    TicketNotFoundError,
)
from helpdesk_sla.models.sla import SlaEventKind
from helpdesk_sla.models.ticket import TicketPriority, TicketStatus
from helpdesk_sla.services.sla_service import SlaService
from tests.conftest import T0, hours, fetch_ticket, SlaPolicyFactory, TicketFactory, SlaEventFactory


def policy_data(name: str = "Standard", **overrides) -> dict:
    data = {
        "name": name,
        "warning_levels": [{"percentage": 50}, {"percentage": 80}],
        "escalation_levels": [
            {"level": 1, "name": "Lead", "percentage_threshold": 90, "notify_users": ["lead"]},
        ],
        "auto_escalation_enabled": True,
    }
    data.update(overrides)
    return data


# -----------------------------------------------------------------------------
# Ticket Status
# -----------------------------------------------------------------------------

class TestTicketStatus:
    """Tests for the live SLA status of a ticket."""

    @pytest.mark.asyncio
    async def test_status_of_open_ticket(self, db_session):
        policy = await SlaPolicyFactory.create(db_session, name="Default", is_default=True)
        ticket = await TicketFactory.create(db_session)

        status = await SlaService(db_session).get_status(ticket.id, now=T0 + hours(20))

        assert status["policy"] == {"id": policy.id, "name": "Default", "is_fallback": False}
        assert status["percentage"] == 28
        assert status["is_breached"] is False
        assert status["breach_type"] is None
        assert status["response_deadline"] == T0 + hours(24)
        assert status["resolution_deadline"] == T0 + hours(72)
        assert status["elapsed_hours"] == 20.0
        assert status["sla_warnings_sent"] == []
        assert status["escalation_history"] == []

    @pytest.mark.asyncio
    async def test_status_does_not_write(self, db_session, session_factory):
        """Test that reading the status leaves the ticket unchanged."""
        await SlaPolicyFactory.create(db_session, is_default=True)
        ticket = await TicketFactory.create(db_session)

        status = await SlaService(db_session).get_status(ticket.id, now=T0 + hours(30))
        await db_session.commit()

        assert status["breach_type"] == "response"
        stored = await fetch_ticket(session_factory, ticket.id)
        assert stored.sla_breach_at is None
        assert stored.sla_response_time_hours is None

    @pytest.mark.asyncio
    async def test_status_with_fallback_policy(self, db_session):
        ticket = await TicketFactory.create(db_session, priority=TicketPriority.URGENT)

        status = await SlaService(db_session).get_status(ticket.id, now=T0 + hours(1))

        assert status["policy"]["is_fallback"] is True
        assert status["resolution_time_hours"] == 72

    @pytest.mark.asyncio
    async def test_status_includes_ledger(self, db_session):
        ticket = await TicketFactory.create(db_session)
        await SlaEventFactory.create(db_session, ticket, SlaEventKind.WARNING, 50)
        await SlaEventFactory.create(db_session, ticket, SlaEventKind.WARNING, 20)
        await SlaEventFactory.create(db_session, ticket, SlaEventKind.ESCALATION, 1, percentage=95)

        status = await SlaService(db_session).get_status(ticket.id, now=T0 + hours(1))

        assert status["sla_warnings_sent"] == [20, 50]
        assert [entry["level"] for entry in status["escalation_history"]] == [1]
        assert status["escalation_history"][0]["percentage"] == 95

    @pytest.mark.asyncio
    async def test_unknown_ticket(self, db_session):
        with pytest.raises(TicketNotFoundError):
            await SlaService(db_session).get_status("missing")

    @pytest.mark.asyncio
    async def test_deleted_ticket_is_not_found(self, db_session):
        ticket = await TicketFactory.create(db_session, is_deleted=True)

        with pytest.raises(TicketNotFoundError):
            await SlaService(db_session).get_status(ticket.id)


# -----------------------------------------------------------------------------
# Assignment and Metrics
# -----------------------------------------------------------------------------

class TestAssignment:
    """Tests for SLA assignment and metric refresh."""

    @pytest.mark.asyncio
    async def test_assign_sla_takes_snapshot(self, db_session):
        policy = await SlaPolicyFactory.create(db_session, category="network")
        ticket = await TicketFactory.create(
            db_session, category="network", priority=TicketPriority.URGENT
        )

        assigned = await SlaService(db_session).assign_sla(ticket.id)

        assert assigned.sla_policy_id == policy.id
        assert assigned.sla_priority == "urgent"
        assert assigned.sla_response_time_hours == 1
        assert assigned.sla_resolution_time_hours == 8
        assert assigned.due_date == T0 + hours(8)

    @pytest.mark.asyncio
    async def test_snapshot_survives_policy_change(self, db_session):
        """Test that later policy edits do not move an assigned ticket's targets."""
        policy = await SlaPolicyFactory.create(db_session, is_default=True)
        ticket = await TicketFactory.create(db_session)
        service = SlaService(db_session)
        await service.assign_sla(ticket.id)

        await service.update_policy(policy.id, {
            "priorities": {"medium": {"response_time_hours": 2, "resolution_time_hours": 6}},
        })
        status = await service.get_status(ticket.id, now=T0 + hours(10))

        assert status["resolution_time_hours"] == 72
        assert status["is_breached"] is False

    @pytest.mark.asyncio
    async def test_update_sla_metrics(self, db_session):
        ticket = await TicketFactory.create(
            db_session,
            status=TicketStatus.RESOLVED,
            first_response_at=T0 + hours(1.5),
            resolved_at=T0 + hours(10.25),
        )

        updated = await SlaService(db_session).update_sla_metrics(ticket.id)

        assert updated.response_time_hours == 1.5
        assert updated.resolution_time_hours == 10.25


# -----------------------------------------------------------------------------
# Breaches and Statistics
# -----------------------------------------------------------------------------

class TestBreachesAndStatistics:
    """Tests for breach listing and aggregate statistics."""

    @pytest.mark.asyncio
    async def test_list_breaches(self, db_session):
        await SlaPolicyFactory.create(db_session, is_default=True)
        response_breach = await TicketFactory.create(db_session, title="No answer yet")
        resolution_breach = await TicketFactory.create(
            db_session, priority=TicketPriority.URGENT, first_response_at=T0 + hours(0.5)
        )
        await TicketFactory.create(db_session, priority=TicketPriority.LOW)
        await TicketFactory.create(db_session, status=TicketStatus.RESOLVED, resolved_at=T0 + hours(200))

        breaches = await SlaService(db_session).list_breaches(now=T0 + hours(30))

        by_id = {item["ticket_id"]: item for item in breaches}
        assert set(by_id) == {response_breach.id, resolution_breach.id}
        assert by_id[response_breach.id]["breach_type"] == "response"
        assert by_id[response_breach.id]["title"] == "No answer yet"
        assert by_id[resolution_breach.id]["breach_type"] == "resolution"
        assert by_id[resolution_breach.id]["percentage"] == 100

    @pytest.mark.asyncio
    async def test_statistics(self, db_session):
        await SlaPolicyFactory.create(db_session, is_default=True)
        now = T0 + hours(30)

        breached = await TicketFactory.create(db_session)
        await SlaEventFactory.create(db_session, breached, SlaEventKind.WARNING, 20)
        await SlaEventFactory.create(db_session, breached, SlaEventKind.ESCALATION, 1)
        await TicketFactory.create(db_session, first_response_at=T0 + hours(1))
        await TicketFactory.create(
            db_session,
            status=TicketStatus.RESOLVED,
            first_response_at=T0 + hours(2),
            resolved_at=T0 + hours(10),
            sla_breach_at=T0 + hours(9),
        )
        await TicketFactory.create(db_session, created_at=now - hours(24 * 40))

        stats = await SlaService(db_session).get_statistics(days=30, now=now)

        assert stats["period_days"] == 30
        assert stats["total_tickets"] == 3
        assert stats["open_tickets"] == 2
        assert stats["breached_tickets"] == 2
        assert stats["response_breaches"] == 1
        assert stats["resolution_breaches"] == 0
        assert stats["warned_tickets"] == 1
        assert stats["escalated_tickets"] == 1
        assert stats["breach_rate"] == 66.67
        assert stats["avg_response_time_hours"] == 2.0
        assert stats["avg_resolution_time_hours"] == 10.0

    @pytest.mark.asyncio
    async def test_statistics_without_tickets(self, db_session):
        stats = await SlaService(db_session).get_statistics(days=7, now=T0)

        assert stats["total_tickets"] == 0
        assert stats["breach_rate"] == 0.0
        assert stats["avg_response_time_hours"] is None


# -----------------------------------------------------------------------------
# Policy Management
# -----------------------------------------------------------------------------

class TestPolicyManagement:
    """Tests for creating and maintaining SLA policies."""

    @pytest.mark.asyncio
    async def test_create_policy_fills_missing_priorities(self, db_session):
        policy = await SlaService(db_session).create_policy(policy_data(
            priorities={"urgent": {"response_time_hours": 0.5, "resolution_time_hours": 4}},
        ), created_by="admin")

        assert policy.priorities["urgent"]["resolution_time_hours"] == 4
        assert policy.priorities["urgent"]["enabled"] is True
        assert policy.priorities["medium"]["resolution_time_hours"] == 72
        assert policy.created_by == "admin"
        assert [w.percentage for w in policy.warning_levels] == [50, 80]
        assert [lvl.level for lvl in policy.escalation_levels] == [1]

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, db_session):
        service = SlaService(db_session)
        await service.create_policy(policy_data("Standard"))

        with pytest.raises(DuplicatePolicyError):
            await service.create_policy(policy_data("Standard"))

    @pytest.mark.parametrize("overrides", [
        {"name": "   "},
        {"priorities": {"high": {"response_time_hours": 10, "resolution_time_hours": 5}}},
        {"priorities": {"high": {"response_time_hours": 0, "resolution_time_hours": 5}}},
        {"priorities": {"critical": {"response_time_hours": 1, "resolution_time_hours": 5}}},
        {"escalation_levels": [
            {"level": 1, "name": "A", "percentage_threshold": 50},
            {"level": 1, "name": "B", "percentage_threshold": 90},
        ]},
        {"escalation_levels": [{"level": 6, "name": "A", "percentage_threshold": 50}]},
        {"escalation_levels": [{"level": 1, "name": "A", "percentage_threshold": 150}]},
        {"escalation_levels": [{"level": 1, "name": "A", "percentage_threshold": 50, "action": "page"}]},
        {"warning_levels": [{"percentage": 50}, {"percentage": 50}]},
        {"warning_levels": [{"percentage": 50, "notify_channels": ["pager"]}]},
    ])
    @pytest.mark.asyncio
    async def test_invalid_policy_rejected(self, db_session, overrides):
        with pytest.raises(InvalidPolicyError):
            await SlaService(db_session).create_policy(policy_data(**overrides))

    @pytest.mark.asyncio
    async def test_single_default_policy(self, db_session):
        """Test that creating or promoting a default clears the flag elsewhere."""
        service = SlaService(db_session)
        first = await service.create_policy(policy_data("First", is_default=True))
        second = await service.create_policy(policy_data("Second", is_default=True))

        await db_session.refresh(first)
        assert first.is_default is False
        assert second.is_default is True

        await service.set_default_policy(first.id)
        await db_session.refresh(second)
        assert first.is_default is True
        assert second.is_default is False

        defaults = [p for p in await service.list_policies() if p.is_default]
        assert [p.id for p in defaults] == [first.id]

    @pytest.mark.asyncio
    async def test_inactive_policy_cannot_be_default(self, db_session):
        service = SlaService(db_session)
        policy = await service.create_policy(policy_data(is_active=False))

        with pytest.raises(InvalidPolicyError):
            await service.set_default_policy(policy.id)

    @pytest.mark.asyncio
    async def test_update_policy_replaces_levels(self, db_session):
        service = SlaService(db_session)
        policy = await service.create_policy(policy_data())

        updated = await service.update_policy(policy.id, {
            "description": "Updated",
            "escalation_levels": [
                {"level": 1, "name": "Lead", "percentage_threshold": 75},
                {"level": 2, "name": "Manager", "percentage_threshold": 100, "action": "assign",
                 "assign_to": "manager"},
            ],
            "warning_levels": [{"percentage": 60}],
        }, updated_by="admin")

        assert updated.description == "Updated"
        assert updated.updated_by == "admin"
        assert [(lvl.level, lvl.percentage_threshold) for lvl in updated.escalation_levels] == [(1, 75), (2, 100)]
        assert [w.percentage for w in updated.warning_levels] == [60]
        assert updated.name == "Standard"

    @pytest.mark.asyncio
    async def test_update_policy_validates_merged_definition(self, db_session):
        service = SlaService(db_session)
        policy = await service.create_policy(policy_data())

        with pytest.raises(InvalidPolicyError):
            await service.update_policy(policy.id, {
                "priorities": {"low": {"response_time_hours": 50, "resolution_time_hours": 10}},
            })

    @pytest.mark.asyncio
    async def test_partial_priority_update_keeps_other_rules(self, db_session):
        """Test that updating one priority leaves the policy's other custom targets alone."""
        service = SlaService(db_session)
        policy = await service.create_policy(policy_data(priorities={
            "medium": {"response_time_hours": 2, "resolution_time_hours": 10},
            "urgent": {"response_time_hours": 0.5, "resolution_time_hours": 4, "enabled": False},
        }))

        updated = await service.update_policy(policy.id, {
            "priorities": {"high": {"response_time_hours": 3, "resolution_time_hours": 12}},
        })

        assert updated.priorities["high"]["resolution_time_hours"] == 12
        assert updated.priorities["medium"]["response_time_hours"] == 2
        assert updated.priorities["medium"]["resolution_time_hours"] == 10
        assert updated.priorities["urgent"]["enabled"] is False
        assert updated.priorities["low"]["resolution_time_hours"] == 120

    @pytest.mark.asyncio
    async def test_partial_rule_update_keeps_other_keys(self, db_session):
        service = SlaService(db_session)
        policy = await service.create_policy(policy_data(priorities={
            "medium": {"response_time_hours": 2, "resolution_time_hours": 10},
        }))

        updated = await service.update_policy(policy.id, {"priorities": {"medium": {"enabled": False}}})

        assert updated.priorities["medium"] == {
            "response_time_hours": 2, "resolution_time_hours": 10, "enabled": False,
        }

    @pytest.mark.asyncio
    async def test_update_clears_category_and_description(self, db_session):
        service = SlaService(db_session)
        policy = await service.create_policy(policy_data(
            category="network", description="Network team",
        ))

        updated = await service.update_policy(policy.id, {"category": None, "description": None})

        assert updated.category is None
        assert updated.description is None
        assert await service.list_policies(category="network") == []

    @pytest.mark.asyncio
    async def test_update_ignores_null_for_required_fields(self, db_session):
        service = SlaService(db_session)
        policy = await service.create_policy(policy_data(category="network"))

        updated = await service.update_policy(policy.id, {"name": None, "is_active": None})

        assert updated.name == "Standard"
        assert updated.is_active is True
        assert updated.category == "network"

    @pytest.mark.parametrize("overrides", [
        {"escalation_levels": [{"level": True, "name": "A", "percentage_threshold": 50}]},
        {"escalation_levels": [{"level": 1, "name": "A", "percentage_threshold": True}]},
        {"warning_levels": [{"percentage": False}]},
        {"priorities": {"high": {"response_time_hours": True, "resolution_time_hours": 5}}},
        {"auto_escalation_level": True},
    ])
    @pytest.mark.asyncio
    async def test_boolean_numbers_rejected(self, db_session, overrides):
        with pytest.raises(InvalidPolicyError):
            await SlaService(db_session).create_policy(policy_data(**overrides))

    @pytest.mark.asyncio
    async def test_update_policy_rename_to_taken_name(self, db_session):
        service = SlaService(db_session)
        await service.create_policy(policy_data("Taken"))
        policy = await service.create_policy(policy_data("Mine"))

        with pytest.raises(DuplicatePolicyError):
            await service.update_policy(policy.id, {"name": "Taken"})

    @pytest.mark.asyncio
    async def test_deactivate_policy(self, db_session):
        service = SlaService(db_session)
        policy = await service.create_policy(policy_data(is_default=True))

        await service.deactivate_policy(policy.id)

        assert policy.is_active is False
        assert policy.is_default is False
        assert await service.list_policies(active_only=True) == []
        assert [p.id for p in await service.list_policies()] == [policy.id]

    @pytest.mark.asyncio
    async def test_deactivated_policy_still_applies_to_assigned_tickets(self, db_session):
        service = SlaService(db_session)
        policy = await service.create_policy(policy_data(
            priorities={"medium": {"response_time_hours": 2, "resolution_time_hours": 10}},
        ))
        ticket = await TicketFactory.create(db_session, sla_policy_id=policy.id)

        await service.deactivate_policy(policy.id)
        status = await service.get_status(ticket.id, now=T0 + hours(5))

        assert status["policy"]["id"] == policy.id
        assert status["resolution_time_hours"] == 10

    @pytest.mark.asyncio
    async def test_list_policies_by_category(self, db_session):
        service = SlaService(db_session)
        await service.create_policy(policy_data("Network", category="network"))
        await service.create_policy(policy_data("General"))

        policies = await service.list_policies(category="network")

        assert [p.name for p in policies] == ["Network"]

    @pytest.mark.asyncio
    async def test_unknown_policy(self, db_session):
        with pytest.raises(PolicyNotFoundError):
            await SlaService(db_session).get_policy("missing")
