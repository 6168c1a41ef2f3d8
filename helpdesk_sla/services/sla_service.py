"""
SLA Service Module

Read-side SLA queries (ticket status, breach list, statistics), the policy
assignment snapshot and SLA policy management.
"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
import logging

from helpdesk_sla.core.exceptions import (
    DuplicatePolicyError,
    InvalidPolicyError,
    PolicyNotFoundError,
    TicketNotFoundError,
)
from helpdesk_sla.models.sla import (
    DEFAULT_PRIORITY_RULES,
    BreachType,
    EscalationAction,
    NotifyChannel,
    SlaEscalationLevel,
    SlaEventKind,
    SlaPolicy,
    SlaWarningLevel,
)
from helpdesk_sla.models.ticket import TERMINAL_STATUSES, Ticket
from helpdesk_sla.services.policy_resolver import PolicyResolver, load_policies, resolve_policy
from helpdesk_sla.services.sla_calculator import (
    check_breach,
    compute_deadlines,
    compute_elapsed_hours,
    get_ticket_rules,
    refresh_sla_metrics,
    snapshot_sla,
)
from helpdesk_sla.services.sla_policy import PRIORITIES


logger = logging.getLogger(__name__)

POLICY_FIELDS = (
    "name",
    "description",
    "category",
    "warnings_enabled",
    "auto_escalation_enabled",
    "escalate_on_response_breach",
    "escalate_on_resolution_breach",
    "auto_escalation_level",
    "is_active",
)

# Fields an update may explicitly clear
NULLABLE_POLICY_FIELDS = ("description", "category")


def _value(item):
    return getattr(item, "value", item)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class SlaService:
    """
    Service for SLA queries and SLA policy management.

    Every read operation recomputes SLA state from the ticket and its
    effective policy without writing anything back.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the SLA service.

        Args:
            db: Async database session
        """
        self.db = db

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    async def get_ticket(self, ticket_id: str) -> Ticket:
        """
        Get a non-deleted ticket.

        Raises:
            TicketNotFoundError: If the ticket does not exist or was deleted
        """
        # Reloaded so ledger rows written by the monitor in other sessions show up
        result = await self.db.execute(
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .execution_options(populate_existing=True)
        )
        ticket = result.scalar_one_or_none()
        if ticket is None or ticket.is_deleted:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def get_open_tickets(self) -> List[Ticket]:
        result = await self.db.execute(
            select(Ticket).where(
                Ticket.status.notin_(TERMINAL_STATUSES),
                Ticket.is_deleted == False  # noqa: E712
            ).order_by(Ticket.created_at)
        )
        return list(result.scalars().all())

    async def get_status(
        self,
        ticket_id: str,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Get the live SLA status of a ticket.

        Args:
            ticket_id: The ID of the ticket
            now: Evaluation time (defaults to the current UTC time)

        Returns:
            Policy summary, deadlines, percentage, breach classification,
            metrics, fired warnings and escalation history

        Raises:
            TicketNotFoundError: If the ticket does not exist or was deleted
        """
        now = now or datetime.utcnow()
        ticket = await self.get_ticket(ticket_id)
        policy = resolve_policy(ticket, await load_policies(self.db))

        rules = get_ticket_rules(ticket, policy)
        deadlines = compute_deadlines(ticket, policy)
        breach = check_breach(ticket, now, policy)

        return {
            "ticket_id": ticket.id,
            "ticket_number": ticket.ticket_number,
            "status": _value(ticket.status),
            "priority": _value(ticket.priority),
            "category": ticket.category,
            "policy": {
                "id": policy.id,
                "name": policy.name,
                "is_fallback": policy.is_fallback,
            },
            "response_time_hours": rules.response_time_hours,
            "resolution_time_hours": rules.resolution_time_hours,
            "response_deadline": deadlines.response_deadline,
            "resolution_deadline": deadlines.resolution_deadline,
            "due_date": ticket.due_date,
            "created_at": ticket.created_at,
            "first_response_at": ticket.first_response_at,
            "resolved_at": ticket.resolved_at,
            "closed_at": ticket.closed_at,
            "elapsed_hours": round(compute_elapsed_hours(ticket, now), 2),
            "percentage": breach.percentage,
            "is_breached": breach.is_breached,
            "breach_type": breach.breach_type,
            "sla_breach_at": ticket.sla_breach_at,
            "response_time_metric_hours": ticket.response_time_hours,
            "resolution_time_metric_hours": ticket.resolution_time_hours,
            "assigned_to": ticket.assigned_to,
            "escalation_count": ticket.escalation_count or 0,
            "escalation_level": ticket.escalation_level,
            "escalated_at": ticket.escalated_at,
            "sla_warnings_sent": ticket.sla_warnings_sent,
            "escalation_history": ticket.escalation_history,
        }

    async def list_breaches(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Open tickets that are currently in breach."""
        now = now or datetime.utcnow()
        resolver = PolicyResolver(await load_policies(self.db))

        breaches = []
        for ticket in await self.get_open_tickets():
            breach = check_breach(ticket, now, resolver.resolve(ticket))
            if not breach.is_breached:
                continue
            breaches.append({
                "ticket_id": ticket.id,
                "ticket_number": ticket.ticket_number,
                "title": ticket.title,
                "priority": _value(ticket.priority),
                "status": _value(ticket.status),
                "breach_type": breach.breach_type,
                "percentage": breach.percentage,
                "sla_breach_at": ticket.sla_breach_at,
                "escalation_level": ticket.escalation_level,
                "assigned_to": ticket.assigned_to,
            })
        return breaches

    async def get_statistics(
        self,
        days: int = 30,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Aggregate SLA statistics for tickets created in the last ``days`` days.

        A ticket counts as breached if it is breached right now or a breach
        was recorded on it earlier.
        """
        now = now or datetime.utcnow()
        since = now - timedelta(days=days)
        resolver = PolicyResolver(await load_policies(self.db))

        result = await self.db.execute(
            select(Ticket).where(
                Ticket.created_at >= since,
                Ticket.is_deleted == False  # noqa: E712
            ).execution_options(populate_existing=True)
        )
        tickets = list(result.scalars().all())

        stats = {
            "period_days": days,
            "total_tickets": len(tickets),
            "open_tickets": 0,
            "breached_tickets": 0,
            "response_breaches": 0,
            "resolution_breaches": 0,
            "warned_tickets": 0,
            "escalated_tickets": 0,
            "breach_rate": 0.0,
            "avg_response_time_hours": None,
            "avg_resolution_time_hours": None,
        }
        response_times = []
        resolution_times = []

        for ticket in tickets:
            breach = check_breach(ticket, now, resolver.resolve(ticket))

            if not ticket.is_terminal:
                stats["open_tickets"] += 1
            if breach.is_breached or ticket.sla_breach_at is not None:
                stats["breached_tickets"] += 1
            if breach.breach_type == BreachType.RESPONSE.value:
                stats["response_breaches"] += 1
            elif breach.breach_type == BreachType.RESOLUTION.value:
                stats["resolution_breaches"] += 1

            kinds = {event.kind for event in ticket.sla_events}
            if SlaEventKind.WARNING in kinds:
                stats["warned_tickets"] += 1
            if SlaEventKind.ESCALATION in kinds:
                stats["escalated_tickets"] += 1

            if ticket.is_terminal:
                if ticket.first_response_at is not None:
                    response_times.append(
                        (ticket.first_response_at - ticket.created_at).total_seconds() / 3600
                    )
                finished_at = ticket.resolved_at or ticket.closed_at
                if finished_at is not None:
                    resolution_times.append(
                        (finished_at - ticket.created_at).total_seconds() / 3600
                    )

        if tickets:
            stats["breach_rate"] = round(stats["breached_tickets"] / len(tickets) * 100, 2)
        if response_times:
            stats["avg_response_time_hours"] = round(sum(response_times) / len(response_times), 2)
        if resolution_times:
            stats["avg_resolution_time_hours"] = round(sum(resolution_times) / len(resolution_times), 2)

        return stats

    async def assign_sla(self, ticket_id: str) -> Ticket:
        """
        Take a fresh SLA snapshot for a ticket from its resolved policy.

        Copies the response/resolution targets for the ticket's priority,
        records the policy and sets the due date.

        Raises:
            TicketNotFoundError: If the ticket does not exist or was deleted
        """
        ticket = await self.get_ticket(ticket_id)
        policy = resolve_policy(ticket, await load_policies(self.db))

        rules = snapshot_sla(ticket, policy)
        refresh_sla_metrics(ticket)
        await self.db.commit()

        logger.info(
            f"Assigned SLA to ticket {ticket.ticket_number}: policy={policy.name}, "
            f"response={rules.response_time_hours}h, resolution={rules.resolution_time_hours}h"
        )
        return ticket

    async def update_sla_metrics(self, ticket_id: str) -> Ticket:
        """Recompute response and resolution time metrics for a ticket."""
        ticket = await self.get_ticket(ticket_id)
        refresh_sla_metrics(ticket)
        await self.db.commit()
        return ticket

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    async def list_policies(
        self,
        active_only: bool = False,
        category: Optional[str] = None
    ) -> List[SlaPolicy]:
        query = select(SlaPolicy)
        if active_only:
            query = query.where(SlaPolicy.is_active == True)  # noqa: E712
        if category:
            query = query.where(SlaPolicy.category == category)
        result = await self.db.execute(query.order_by(SlaPolicy.created_at))
        return list(result.scalars().all())

    async def get_policy(self, policy_id: str) -> SlaPolicy:
        policy = await self.db.get(SlaPolicy, policy_id)
        if policy is None:
            raise PolicyNotFoundError(policy_id)
        return policy

    async def create_policy(self, data: Dict[str, Any], created_by: Optional[str] = None) -> SlaPolicy:
        """
        Create a new SLA policy.

        Args:
            data: Policy fields, as produced by SlaPolicyCreate
            created_by: Optional author

        Returns:
            Created SlaPolicy object

        Raises:
            InvalidPolicyError: If the definition is invalid
            DuplicatePolicyError: If a policy with the same name exists
        """
        data = dict(data)
        data["priorities"] = self._merge_priorities(data.get("priorities"))
        self._validate_policy(data)
        await self._ensure_unique_name(data["name"])

        policy = SlaPolicy(
            **{field: data[field] for field in POLICY_FIELDS if field in data},
            priorities=data["priorities"],
            created_by=created_by or data.get("created_by"),
        )
        policy.escalation_levels = self._build_escalation_levels(data.get("escalation_levels") or [])
        policy.warning_levels = self._build_warning_levels(data.get("warning_levels") or [])

        if data.get("is_default"):
            await self._clear_default()
            policy.is_default = True

        self.db.add(policy)
        await self._commit_policy(policy.name)

        logger.info(
            f"Created SLA policy: name={policy.name}, category={policy.category}, "
            f"default={policy.is_default}, escalation_levels={len(policy.escalation_levels)}"
        )
        return policy

    async def update_policy(
        self,
        policy_id: str,
        updates: Dict[str, Any],
        updated_by: Optional[str] = None
    ) -> SlaPolicy:
        """
        Update an existing SLA policy.

        Only the given fields change; escalation and warning level lists are
        replaced as a whole when present.

        Raises:
            PolicyNotFoundError: If the policy does not exist
            InvalidPolicyError: If the resulting definition is invalid
            DuplicatePolicyError: If the new name is taken
        """
        policy = await self.get_policy(policy_id)
        updates = {
            key: value for key, value in updates.items()
            if value is not None or key in NULLABLE_POLICY_FIELDS
        }

        merged = {field: getattr(policy, field) for field in POLICY_FIELDS}
        merged.update({k: v for k, v in updates.items() if k in POLICY_FIELDS})
        merged["priorities"] = (
            self._merge_priorities(updates["priorities"], base=policy.priorities)
            if "priorities" in updates else policy.priorities
        )
        merged["escalation_levels"] = updates.get("escalation_levels", [
            {
                "level": level.level,
                "name": level.name,
                "percentage_threshold": level.percentage_threshold,
                "action": level.action,
                "notify_users": level.notify_users,
                "assign_to": level.assign_to,
            }
            for level in policy.escalation_levels
        ])
        merged["warning_levels"] = updates.get("warning_levels", [
            {
                "percentage": warning.percentage,
                "notify_users": warning.notify_users,
                "notify_channels": warning.notify_channels,
            }
            for warning in policy.warning_levels
        ])
        self._validate_policy(merged)

        if merged["name"] != policy.name:
            await self._ensure_unique_name(merged["name"])

        for field in POLICY_FIELDS:
            setattr(policy, field, merged[field])
        policy.priorities = merged["priorities"]
        policy.updated_by = updated_by or updates.get("updated_by")

        # Old rows must be gone before new ones with the same keys are inserted
        if "escalation_levels" in updates:
            policy.escalation_levels.clear()
        if "warning_levels" in updates:
            policy.warning_levels.clear()
        await self.db.flush()
        if "escalation_levels" in updates:
            policy.escalation_levels.extend(self._build_escalation_levels(updates["escalation_levels"]))
        if "warning_levels" in updates:
            policy.warning_levels.extend(self._build_warning_levels(updates["warning_levels"]))

        if not policy.is_active:
            policy.is_default = False

        await self._commit_policy(policy.name)
        logger.info(f"Updated SLA policy {policy.name}: fields={sorted(updates)}")
        return policy

    async def deactivate_policy(self, policy_id: str, updated_by: Optional[str] = None) -> SlaPolicy:
        """Soft-delete a policy. Tickets that reference it keep resolving to it."""
        policy = await self.get_policy(policy_id)
        policy.is_active = False
        policy.is_default = False
        if updated_by:
            policy.updated_by = updated_by
        await self.db.commit()

        logger.info(f"Deactivated SLA policy {policy.name}")
        return policy

    async def set_default_policy(self, policy_id: str, updated_by: Optional[str] = None) -> SlaPolicy:
        """
        Make a policy the default, clearing the flag on every other policy.

        Raises:
            PolicyNotFoundError: If the policy does not exist
            InvalidPolicyError: If the policy is inactive
        """
        policy = await self.get_policy(policy_id)
        if not policy.is_active:
            raise InvalidPolicyError(
                f"Inactive SLA policy cannot be the default: {policy.name}",
                {"policy_id": policy_id},
            )

        await self._clear_default(exclude_id=policy.id)
        policy.is_default = True
        if updated_by:
            policy.updated_by = updated_by
        await self.db.commit()

        logger.info(f"SLA policy {policy.name} is now the default")
        return policy

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _ensure_unique_name(self, name: str):
        result = await self.db.execute(select(SlaPolicy.id).where(SlaPolicy.name == name))
        if result.first() is not None:
            raise DuplicatePolicyError(f"SLA policy already exists: {name}", {"name": name})

    async def _commit_policy(self, name: str):
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicatePolicyError(f"SLA policy already exists: {name}", {"name": name}) from e

    async def _clear_default(self, exclude_id: Optional[str] = None):
        query = update(SlaPolicy).where(SlaPolicy.is_default == True)  # noqa: E712
        if exclude_id:
            query = query.where(SlaPolicy.id != exclude_id)
        await self.db.execute(query.values(is_default=False).execution_options(synchronize_session="fetch"))

    @staticmethod
    def _merge_priorities(
        priorities: Optional[Dict[str, Any]],
        base: Optional[Dict[str, Dict[str, Any]]] = None
    ) -> Dict[str, Dict[str, Any]]:
        """Overlay the given rules, key by key, onto base (the defaults when omitted)."""
        merged = {
            priority: dict(rule)
            for priority, rule in (base if base is not None else DEFAULT_PRIORITY_RULES).items()
        }
        for priority, rule in (priorities or {}).items():
            if rule is not None:
                merged[priority] = {**merged.get(priority, {}), **dict(rule)}
        return merged

    @staticmethod
    def _build_escalation_levels(levels: List[Dict[str, Any]]) -> List[SlaEscalationLevel]:
        return [
            SlaEscalationLevel(
                level=level["level"],
                name=level["name"],
                percentage_threshold=level["percentage_threshold"],
                action=EscalationAction(_value(level.get("action") or EscalationAction.NOTIFY)),
                notify_users=list(level.get("notify_users") or []),
                assign_to=level.get("assign_to"),
            )
            for level in sorted(levels, key=lambda level: level["level"])
        ]

    @staticmethod
    def _build_warning_levels(levels: List[Dict[str, Any]]) -> List[SlaWarningLevel]:
        return [
            SlaWarningLevel(
                percentage=warning["percentage"],
                notify_users=list(warning.get("notify_users") or []),
                notify_channels=[
                    _value(channel)
                    for channel in (warning.get("notify_channels") or [NotifyChannel.WEB])
                ],
            )
            for warning in sorted(levels, key=lambda warning: warning["percentage"])
        ]

    @staticmethod
    def _validate_policy(data: Dict[str, Any]):
        """
        Validate a complete policy definition.

        Raises:
            InvalidPolicyError: On the first rule violated
        """
        def reject(message: str):
            raise InvalidPolicyError(message, {"name": data.get("name")})

        if not (data.get("name") or "").strip():
            reject("SLA policy name must not be empty")
        if len(data["name"]) > 200:
            reject("SLA policy name must be at most 200 characters")
        if len(data.get("description") or "") > 1000:
            reject("SLA policy description must be at most 1000 characters")

        for priority, rule in (data.get("priorities") or {}).items():
            if priority not in PRIORITIES:
                reject(f"Unknown priority: {priority}")
            response = rule.get("response_time_hours")
            resolution = rule.get("resolution_time_hours")
            if not _is_number(response) or response <= 0:
                reject(f"{priority}: response_time_hours must be positive")
            if not _is_number(resolution) or resolution <= 0:
                reject(f"{priority}: resolution_time_hours must be positive")
            if resolution < response:
                reject(f"{priority}: resolution_time_hours must not be shorter than response_time_hours")

        seen_levels = set()
        for level in data.get("escalation_levels") or []:
            number = level.get("level")
            if not _is_int(number) or not 1 <= number <= 5:
                reject(f"Escalation level must be between 1 and 5: {number}")
            if number in seen_levels:
                reject(f"Duplicate escalation level: {number}")
            seen_levels.add(number)
            threshold = level.get("percentage_threshold")
            if not _is_int(threshold) or not 0 <= threshold <= 100:
                reject(f"Escalation threshold must be between 0 and 100: {threshold}")
            if not (level.get("name") or "").strip():
                reject(f"Escalation level {number} needs a name")
            try:
                EscalationAction(_value(level.get("action") or EscalationAction.NOTIFY))
            except ValueError:
                reject(f"Unknown escalation action: {level.get('action')}")

        seen_percentages = set()
        for warning in data.get("warning_levels") or []:
            percentage = warning.get("percentage")
            if not _is_int(percentage) or not 0 <= percentage <= 100:
                reject(f"Warning percentage must be between 0 and 100: {percentage}")
            if percentage in seen_percentages:
                reject(f"Duplicate warning percentage: {percentage}")
            seen_percentages.add(percentage)
            for channel in warning.get("notify_channels") or []:
                try:
                    NotifyChannel(_value(channel))
                except ValueError:
                    reject(f"Unknown notification channel: {channel}")

        level = data.get("auto_escalation_level", 1)
        if level is not None and (not _is_int(level) or not 1 <= level <= 5):
            reject(f"Auto escalation level must be between 1 and 5: {level}")
