"""
Server-Sent Events (SSE) Connection Manager.

Keeps the open SSE streams of helpdesk users so SLA warnings and escalations
can be pushed to the agents they concern.
"""

import asyncio
import json
import logging
from asyncio import Queue
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Set

logger = logging.getLogger(__name__)


@dataclass
class SSEConnection:
    """A single open event stream."""
    user_id: str
    queue: Queue = field(default_factory=Queue)
    connected_at: datetime = field(default_factory=datetime.utcnow)

    def __hash__(self):
        return hash(id(self))

    def __eq__(self, other):
        return id(self) == id(other)


class ConnectionManager:
    """
    Registry of SSE connections.

    A user may hold several connections (one per browser tab); every one of
    them receives the events addressed to that user.
    """

    def __init__(self):
        # user_id -> set of connections
        self._user_connections: Dict[str, Set[SSEConnection]] = {}
        self._all_connections: Set[SSEConnection] = set()
        self._lock = asyncio.Lock()

    async def connect(self, user_id: str) -> SSEConnection:
        connection = SSEConnection(user_id=user_id)

        async with self._lock:
            self._user_connections.setdefault(user_id, set()).add(connection)
            self._all_connections.add(connection)

        logger.info(
            f"SSE connection established: user={user_id}, "
            f"total_connections={len(self._all_connections)}"
        )
        return connection

    async def disconnect(self, connection: SSEConnection):
        async with self._lock:
            user_pool = self._user_connections.get(connection.user_id)
            if user_pool is not None:
                user_pool.discard(connection)
                if not user_pool:
                    del self._user_connections[connection.user_id]
            self._all_connections.discard(connection)

        logger.info(
            f"SSE connection closed: user={connection.user_id}, "
            f"total_connections={len(self._all_connections)}"
        )

    async def send_to_user(self, user_id: str, event_type: str, data: Any) -> int:
        """
        Send an event to every connection of a user.

        Returns:
            Number of connections the event was queued on
        """
        connections = list(self._user_connections.get(user_id, ()))
        if not connections:
            logger.debug(f"No connections for user {user_id}")
            return 0

        message = self._format_sse_message(event_type, data)
        await asyncio.gather(
            *(self._send_to_connection(conn, message) for conn in connections),
            return_exceptions=True,
        )
        logger.debug(f"Sent to user {user_id}: event={event_type}, connections={len(connections)}")
        return len(connections)

    async def broadcast_global(self, event_type: str, data: Any) -> int:
        """Send an event to every open connection."""
        connections = list(self._all_connections)
        if not connections:
            return 0

        message = self._format_sse_message(event_type, data)
        await asyncio.gather(
            *(self._send_to_connection(conn, message) for conn in connections),
            return_exceptions=True,
        )
        logger.debug(f"Global broadcast: event={event_type}, recipients={len(connections)}")
        return len(connections)

    async def _send_to_connection(self, connection: SSEConnection, message: str):
        try:
            await connection.queue.put(message)
        except Exception as e:
            logger.error(f"Failed to send message to connection: {e}")

    def _format_sse_message(self, event_type: str, data: Any) -> str:
        """
        Format a message according to the SSE wire format.

        event: event_type
        data: json_data

        """
        json_data = json.dumps(data, default=str)
        return f"event: {event_type}\ndata: {json_data}\n\n"

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_connections": len(self._all_connections),
            "users": len(self._user_connections),
            "connections_by_user": {
                uid: len(conns) for uid, conns in self._user_connections.items()
            },
        }


# Global connection manager instance
connection_manager = ConnectionManager()


async def get_connection_manager() -> ConnectionManager:
    """Dependency to get the connection manager."""
    return connection_manager
