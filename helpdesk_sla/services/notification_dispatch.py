"""
SLA Notification Dispatch.

Hands SLA warnings and escalations to the delivery side. Emission is
fire-and-forget: the monitor never waits for delivery, and delivery errors are
only logged.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from helpdesk_sla.core.sse import ConnectionManager, connection_manager
from helpdesk_sla.models.sla import EscalationAction, NotifyChannel

logger = logging.getLogger(__name__)

WARNING_EVENT = "sla_warning"
ESCALATION_EVENT = "sla_escalation"


@dataclass
class SlaNotification:
    """Event raised by the SLA monitor for a single ticket."""
    event_type: str
    ticket_id: str
    ticket_number: str
    percentage: int
    notify_users: List[str] = field(default_factory=list)
    notify_channels: List[str] = field(default_factory=list)
    threshold: Optional[int] = None  # warning percentage
    level: Optional[int] = None  # escalation level
    level_name: Optional[str] = None
    action: Optional[str] = None
    breach_type: Optional[str] = None
    assigned_to: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class NotificationDispatcher(ABC):
    """
    Base dispatcher. ``emit`` schedules ``deliver`` on a background task.
    """

    def __init__(self):
        self._pending: Set[asyncio.Task] = set()

    def emit(self, notification: SlaNotification) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error(
                f"No running event loop, dropping {notification.event_type} "
                f"for ticket {notification.ticket_number}"
            )
            return

        task = loop.create_task(self._deliver_safely(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver_safely(self, notification: SlaNotification):
        try:
            await self.deliver(notification)
        except Exception as e:
            logger.error(
                f"Failed to deliver {notification.event_type} "
                f"for ticket {notification.ticket_number}: {e}"
            )

    async def drain(self):
        """Wait for every scheduled delivery to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @abstractmethod
    async def deliver(self, notification: SlaNotification):
        ...


class SseNotificationDispatcher(NotificationDispatcher):
    """Delivers SLA events over server-sent events."""

    def __init__(self, manager: Optional[ConnectionManager] = None):
        super().__init__()
        self.manager = manager or connection_manager

    async def deliver(self, notification: SlaNotification):
        payload = notification.to_dict()

        recipients = list(notification.notify_users)
        if (
            notification.action == EscalationAction.ASSIGN.value
            and notification.assigned_to
            and notification.assigned_to not in recipients
        ):
            recipients.append(notification.assigned_to)

        for user_id in recipients:
            await self.manager.send_to_user(user_id, notification.event_type, payload)

        if NotifyChannel.WEB.value in notification.notify_channels:
            await self.manager.broadcast_global(notification.event_type, payload)

        logger.info(
            f"Published {notification.event_type} event: {notification.ticket_number} "
            f"({notification.percentage}%, recipients={len(recipients)})"
        )
