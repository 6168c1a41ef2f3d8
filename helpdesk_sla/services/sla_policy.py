"""
SLA Policy Configuration

Immutable views of SLA policies used during evaluation, plus the pure lookup
functions (priority rules, escalation level) that run against them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple

from helpdesk_sla.core.config import settings
from helpdesk_sla.core.exceptions import InvalidPolicyError
from helpdesk_sla.models.sla import EscalationAction, NotifyChannel, SlaPolicy

FALLBACK_POLICY_ID = "builtin-fallback"
FALLBACK_POLICY_NAME = "Built-in default"

PRIORITIES = ("low", "medium", "high", "urgent")


@dataclass(frozen=True)
class PriorityRule:
    response_time_hours: float
    resolution_time_hours: float
    enabled: bool = True


@dataclass(frozen=True)
class EscalationLevelConfig:
    level: int
    name: str
    percentage_threshold: int
    action: str = EscalationAction.NOTIFY.value
    notify_users: Tuple[str, ...] = ()
    assign_to: Optional[str] = None


@dataclass(frozen=True)
class WarningLevelConfig:
    percentage: int
    notify_users: Tuple[str, ...] = ()
    notify_channels: Tuple[str, ...] = (NotifyChannel.WEB.value,)


@dataclass(frozen=True)
class AutoEscalationConfig:
    enabled: bool = False
    on_response_breach: bool = False
    on_resolution_breach: bool = True
    escalation_level: int = 1


@dataclass(frozen=True)
class PolicyConfig:
    """Snapshot of an SLA policy taken once per evaluation pass."""

    id: str
    name: str
    priorities: Dict[str, PriorityRule] = field(default_factory=dict)
    escalation_levels: Tuple[EscalationLevelConfig, ...] = ()
    warnings_enabled: bool = False
    warning_levels: Tuple[WarningLevelConfig, ...] = ()
    auto_escalation: AutoEscalationConfig = AutoEscalationConfig(enabled=False)
    category: Optional[str] = None
    is_active: bool = True
    is_default: bool = False
    created_at: Optional[datetime] = None

    @property
    def is_fallback(self) -> bool:
        return self.id == FALLBACK_POLICY_ID

    @classmethod
    def from_model(cls, policy: SlaPolicy) -> "PolicyConfig":
        """
        Build an immutable config from a stored policy.

        Args:
            policy: Loaded SlaPolicy with its levels

        Returns:
            PolicyConfig

        Raises:
            InvalidPolicyError: If the stored policy data is malformed
        """
        try:
            priorities = {}
            for priority, rule in (policy.priorities or {}).items():
                priorities[priority] = PriorityRule(
                    response_time_hours=float(rule["response_time_hours"]),
                    resolution_time_hours=float(rule["resolution_time_hours"]),
                    enabled=bool(rule.get("enabled", True)),
                )

            escalation_levels = tuple(
                EscalationLevelConfig(
                    level=int(level.level),
                    name=level.name,
                    percentage_threshold=int(level.percentage_threshold),
                    action=EscalationAction(level.action).value,
                    notify_users=tuple(level.notify_users or ()),
                    assign_to=level.assign_to,
                )
                for level in policy.escalation_levels
            )

            warning_levels = tuple(
                WarningLevelConfig(
                    percentage=int(warning.percentage),
                    notify_users=tuple(warning.notify_users or ()),
                    notify_channels=tuple(
                        NotifyChannel(channel).value for channel in (warning.notify_channels or ())
                    ),
                )
                for warning in sorted(policy.warning_levels, key=lambda w: w.percentage)
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise InvalidPolicyError(
                f"SLA policy {policy.name!r} is malformed: {e}",
                {"policy_id": policy.id},
            ) from e

        return cls(
            id=policy.id,
            name=policy.name,
            priorities=priorities,
            escalation_levels=escalation_levels,
            warnings_enabled=bool(policy.warnings_enabled),
            warning_levels=warning_levels,
            auto_escalation=AutoEscalationConfig(
                enabled=bool(policy.auto_escalation_enabled),
                on_response_breach=bool(policy.escalate_on_response_breach),
                on_resolution_breach=bool(policy.escalate_on_resolution_breach),
                escalation_level=int(policy.auto_escalation_level or 1),
            ),
            category=policy.category,
            is_active=bool(policy.is_active),
            is_default=bool(policy.is_default),
            created_at=policy.created_at,
        )


def default_rule() -> PriorityRule:
    return PriorityRule(
        response_time_hours=settings.SLA_DEFAULT_RESPONSE_HOURS,
        resolution_time_hours=settings.SLA_DEFAULT_RESOLUTION_HOURS,
    )


def build_fallback_policy() -> PolicyConfig:
    """Policy used when nothing is configured: default targets, no warnings, no escalation."""
    rule = default_rule()
    return PolicyConfig(
        id=FALLBACK_POLICY_ID,
        name=FALLBACK_POLICY_NAME,
        priorities={priority: rule for priority in PRIORITIES},
    )


def get_rules_for_priority(policy: PolicyConfig, priority) -> PriorityRule:
    """
    Get response/resolution targets for a priority.

    Disabled or missing priorities fall back to the default 24h/72h targets.
    """
    key = getattr(priority, "value", priority)
    rule = policy.priorities.get(key)
    if rule is not None and rule.enabled:
        return rule
    return default_rule()


def get_escalation_level(
    policy: PolicyConfig,
    percentage: int
) -> Optional[EscalationLevelConfig]:
    """
    Get the highest escalation level reached at the given percentage.

    Levels are ranked by threshold, highest first; equal thresholds resolve
    to the lowest level number.

    Args:
        policy: Effective policy
        percentage: Time used, 0-100

    Returns:
        The reached level, or None if no threshold has been reached
    """
    ranked = sorted(
        policy.escalation_levels,
        key=lambda level: (-level.percentage_threshold, level.level),
    )
    for level in ranked:
        if level.percentage_threshold <= percentage:
            return level
    return None
