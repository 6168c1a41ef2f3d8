"""
SLA Policy Resolver

Resolves the effective SLA policy for a ticket through an ordered chain of
strategies. The first strategy that returns a policy wins; the chain always
ends with the built-in fallback, so resolution never fails.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk_sla.models.sla import SlaPolicy
from helpdesk_sla.models.ticket import Ticket
from helpdesk_sla.services.sla_policy import PolicyConfig, build_fallback_policy

logger = logging.getLogger(__name__)


def _oldest_first(policies: Sequence[SlaPolicy]) -> List[SlaPolicy]:
    return sorted(policies, key=lambda p: (p.created_at or datetime.min, p.id))


class ResolutionStrategy:
    """One step of the resolution chain."""

    name = "base"

    def try_resolve(self, ticket: Ticket, policies: Sequence[SlaPolicy]) -> Optional[SlaPolicy]:
        raise NotImplementedError


class ExplicitPolicyStrategy(ResolutionStrategy):
    # Honoured even when the policy was deactivated after assignment
    name = "explicit"

    def try_resolve(self, ticket, policies):
        if not ticket.sla_policy_id:
            return None
        for policy in policies:
            if policy.id == ticket.sla_policy_id:
                return policy
        return None


class CategoryPolicyStrategy(ResolutionStrategy):
    name = "category"

    def try_resolve(self, ticket, policies):
        if not ticket.category:
            return None
        for policy in _oldest_first(policies):
            if policy.is_active and policy.category == ticket.category:
                return policy
        return None


class DefaultPolicyStrategy(ResolutionStrategy):
    name = "default"

    def try_resolve(self, ticket, policies):
        for policy in _oldest_first(policies):
            if policy.is_active and policy.is_default:
                return policy
        return None


class AnyActivePolicyStrategy(ResolutionStrategy):
    name = "any_active"

    def try_resolve(self, ticket, policies):
        for policy in _oldest_first(policies):
            if policy.is_active:
                return policy
        return None


DEFAULT_STRATEGIES = (
    ExplicitPolicyStrategy(),
    CategoryPolicyStrategy(),
    DefaultPolicyStrategy(),
    AnyActivePolicyStrategy(),
)


class PolicyResolver:
    """
    Resolves policies against a set of policies loaded once per pass.

    Converted PolicyConfig snapshots are cached by policy id, so repeated
    resolution with unchanged state returns equal results.
    """

    def __init__(self, policies: Sequence[SlaPolicy], strategies=DEFAULT_STRATEGIES):
        self.policies = list(policies)
        self.strategies = strategies
        self._configs: Dict[str, PolicyConfig] = {}
        self._fallback = build_fallback_policy()

    def resolve(self, ticket: Ticket) -> PolicyConfig:
        """
        Get the effective policy for a ticket.

        Raises:
            InvalidPolicyError: If the matched policy is malformed
        """
        for strategy in self.strategies:
            policy = strategy.try_resolve(ticket, self.policies)
            if policy is not None:
                logger.debug(
                    f"Ticket {ticket.id} resolved to policy {policy.name} via {strategy.name}"
                )
                return self._to_config(policy)
        return self._fallback

    def _to_config(self, policy: SlaPolicy) -> PolicyConfig:
        config = self._configs.get(policy.id)
        if config is None:
            config = PolicyConfig.from_model(policy)
            self._configs[policy.id] = config
        return config


def resolve_policy(ticket: Ticket, policies: Sequence[SlaPolicy]) -> PolicyConfig:
    """Resolve the effective policy for a single ticket."""
    return PolicyResolver(policies).resolve(ticket)


async def load_policies(db: AsyncSession) -> List[SlaPolicy]:
    """Load every stored policy, active or not, with their levels."""
    result = await db.execute(select(SlaPolicy).order_by(SlaPolicy.created_at))
    return list(result.scalars().all())
