"""
ParkFlow - WebSocket Router
Real-time lot occupancy updates on /ws/lot-updates.
"""

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
import asyncio
import json
import logging

from parkflow.services.broadcast_service import CHANNEL, Subscription
from parkflow.services.container import ServiceContainer, get_services
from parkflow.utils.helpers import utcnow

# Configure logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    tags=["WebSocket"]
)

SNAPSHOT_REQUESTS = ("request_snapshot", "request-parking-status")


@router.websocket("/ws/lot-updates")
async def lot_updates_websocket(websocket: WebSocket):
    """
    WebSocket endpoint for real-time occupancy updates.

    Every message sent to the client goes through its subscription queue,
    drained by a single sender task.

    Client commands:
    - {"type": "request_snapshot"}: current status of every active spot
    - {"type": "ping"}: keep-alive
    """
    services: ServiceContainer = websocket.app.state.services
    broadcaster = services.broadcaster

    subscription = await broadcaster.connect(websocket)
    sender = asyncio.create_task(broadcaster.pump(subscription))

    subscription.offer({
        "type": "connected",
        "channel": CHANNEL,
        "timestamp": utcnow().isoformat(),
    })

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                subscription.offer({"type": "error", "message": "Invalid JSON"})
                continue
            await handle_client_message(services, subscription, message)

    except WebSocketDisconnect:
        logger.info(f"Subscriber {subscription.id} disconnected")

    finally:
        sender.cancel()
        broadcaster.unsubscribe(subscription)


async def handle_client_message(services: ServiceContainer, subscription: Subscription, message):
    """
    Handle an incoming client message.

    Args:
        services: Application services
        subscription: The sender's subscription
        message: Parsed client message
    """
    msg_type = message.get("type", "unknown") if isinstance(message, dict) else "unknown"

    if msg_type == "ping":
        subscription.offer({"type": "pong", "timestamp": utcnow().isoformat()})

    elif msg_type in SNAPSHOT_REQUESTS:
        spots = await services.lots.snapshot()
        # The snapshot replaces any backlog, so it is never dropped
        discarded = subscription.offer_latest({
            "type": "snapshot",
            "timestamp": utcnow().isoformat(),
            "spots": [spot.model_dump(mode="json") for spot in spots],
        })
        if discarded:
            logger.warning(
                f"Subscriber {subscription.id} lagging, {discarded} stale message(s) replaced by snapshot"
            )

    else:
        subscription.offer({"type": "error", "message": f"Unknown message type: {msg_type}"})


@router.get(
    "/ws/status",
    summary="WebSocket connection status",
    description="Number of subscribers on the lot updates channel."
)
async def websocket_status(services: ServiceContainer = Depends(get_services)):
    """Subscriber statistics, useful for monitoring."""
    return {
        "channel": CHANNEL,
        "active_connections": services.broadcaster.get_connection_count(),
        "status": "operational",
        "timestamp": utcnow().isoformat(),
    }
