"""
Server-Sent Events (SSE) API Endpoints.

Streams SLA warnings and escalations to helpdesk users.
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

from helpdesk_sla.core.sse import connection_manager, SSEConnection

logger = logging.getLogger(__name__)

router = APIRouter()

HEARTBEAT_SECONDS = 30.0


async def event_generator(connection: SSEConnection):
    """
    Yield queued messages for a connection, with a heartbeat comment every
    HEARTBEAT_SECONDS of silence.
    """
    try:
        while True:
            try:
                yield await asyncio.wait_for(connection.queue.get(), timeout=HEARTBEAT_SECONDS)
            except asyncio.TimeoutError:
                yield ": ping\n\n"
    except asyncio.CancelledError:
        logger.debug(f"SSE generator cancelled for user {connection.user_id}")
        raise


@router.get("/notifications")
async def stream_notifications(
    user_id: str = Query(..., min_length=1, description="Helpdesk user receiving the events")
):
    """
    Stream SLA events for a user.

    Events:
    - sla_warning: a warning threshold was crossed on a ticket
    - sla_escalation: a ticket was escalated
    - sla_breach_summary: a monitor cycle found breached tickets

    Example usage:
    ```javascript
    const eventSource = new EventSource('/api/v1/sse/notifications?user_id=agent-1');

    eventSource.addEventListener('sla_escalation', (event) => {
        const data = JSON.parse(event.data);
        console.log('Escalated:', data.ticket_number, data.level_name);
    });
    ```
    """
    connection = await connection_manager.connect(user_id=user_id)

    async def generate():
        try:
            yield f"event: connected\ndata: {json.dumps({'user_id': user_id})}\n\n"
            async for message in event_generator(connection):
                yield message
        finally:
            await connection_manager.disconnect(connection)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        }
    )


@router.get("/stats")
async def get_sse_stats():
    """SSE connection statistics."""
    return connection_manager.get_stats()
