"""
ParkFlow - Occupancy Event Broadcaster
Fans lot occupancy updates out to every subscriber of the "lot-updates" channel.
Publishing never waits on subscribers: each one has its own bounded queue,
drained by a sender task that owns the WebSocket.
"""

from fastapi import WebSocket
from typing import Dict, Any, Optional, Callable, List
import asyncio
import itertools
import logging

from parkflow.models.events import (
    LotStatsUpdate,
    SensorTelemetry,
    SpotStatusChange,
)
from parkflow.models.parking import LotStats

# Configure logging
logger = logging.getLogger(__name__)

CHANNEL = "lot-updates"


class Subscription:
    """One subscriber of the channel and its pending messages."""

    _ids = itertools.count(1)

    def __init__(self, queue_size: int, websocket: Optional[WebSocket] = None):
        self.id = next(self._ids)
        self.websocket = websocket
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.dropped = 0

    def offer(self, message: Dict[str, Any]) -> bool:
        """Enqueue without waiting. Returns False when the queue is full."""
        try:
            self.queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False

    def offer_latest(self, message: Dict[str, Any]) -> int:
        """
        Enqueue a message that supersedes everything pending, such as a snapshot.
        When the queue is full the stale backlog is discarded first.

        Returns:
            int: Number of pending messages discarded
        """
        discarded = 0
        if self.queue.full():
            discarded = len(self.drain())
            self.dropped += discarded
        self.queue.put_nowait(message)
        return discarded

    def drain(self) -> List[Dict[str, Any]]:
        """Remove and return every pending message."""
        messages = []
        while not self.queue.empty():
            messages.append(self.queue.get_nowait())
        return messages


class OccupancyBroadcaster:
    """
    Publisher for the lot occupancy updates channel.
    Delivery is best-effort: a slow or broken subscriber only loses its own messages.
    """

    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._subscriptions: Dict[int, Subscription] = {}
        self._listeners: List[Callable[[Dict[str, Any]], None]] = []

    # ==================== SUBSCRIPTIONS ====================

    def subscribe(self, websocket: Optional[WebSocket] = None) -> Subscription:
        """Register a subscriber and return its subscription."""
        subscription = Subscription(self.queue_size, websocket)
        self._subscriptions[subscription.id] = subscription
        logger.info(f"Subscriber {subscription.id} joined {CHANNEL}. Total: {len(self._subscriptions)}")
        return subscription

    def unsubscribe(self, subscription: Subscription):
        """Remove a subscriber. Unknown subscriptions are ignored."""
        if self._subscriptions.pop(subscription.id, None) is not None:
            logger.info(f"Subscriber {subscription.id} left {CHANNEL}. Total: {len(self._subscriptions)}")

    async def connect(self, websocket: WebSocket) -> Subscription:
        """
        Accept a WebSocket and subscribe it to the channel.

        Args:
            websocket: The WebSocket connection to register
        """
        await websocket.accept()
        return self.subscribe(websocket)

    async def pump(self, subscription: Subscription):
        """
        Forward queued messages to the subscription's WebSocket until it fails
        or the task is cancelled.
        """
        websocket = subscription.websocket
        try:
            while True:
                message = await subscription.queue.get()
                await websocket.send_json(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"WebSocket send failed for subscriber {subscription.id}: {e}")
        finally:
            self.unsubscribe(subscription)

    def add_listener(self, listener: Callable[[Dict[str, Any]], None]):
        """Register an in-process callback invoked for every published message."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[Dict[str, Any]], None]):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def get_connection_count(self) -> int:
        """Number of active subscribers."""
        return len(self._subscriptions)

    # ==================== PUBLISHING ====================

    def publish(self, message: Dict[str, Any]) -> int:
        """
        Offer a message to every subscriber without waiting.

        Args:
            message: JSON-ready message

        Returns:
            int: Number of subscribers the message was queued for
        """
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if subscription.offer(message):
                delivered += 1
            else:
                logger.warning(
                    f"Subscriber {subscription.id} queue full, dropped {message.get('type')} message"
                )

        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as e:
                logger.error(f"Broadcast listener failed: {e}")

        return delivered

    def emit_spot_status_change(self, event: SpotStatusChange) -> int:
        """Publish a committed spot status transition."""
        logger.debug(
            f"Spot {event.code or event.spot_id}: {event.old_status.value} -> "
            f"{event.new_status.value} ({event.source.value})"
        )
        return self.publish(event.to_message())

    def emit_lot_stats(self, lot_id: int, stats: LotStats) -> int:
        """Publish recomputed statistics of a lot."""
        return self.publish(LotStatsUpdate(lot_id=lot_id, stats=stats).to_message())

    def emit_sensor_telemetry(self, telemetry: SensorTelemetry) -> int:
        """Publish synthesized sensor readings."""
        return self.publish(telemetry.to_message())

    async def close(self):
        """Close all subscriber WebSockets."""
        for subscription in list(self._subscriptions.values()):
            self.unsubscribe(subscription)
            if subscription.websocket is not None:
                try:
                    await subscription.websocket.close()
                except Exception as e:
                    logger.debug(f"Error closing subscriber {subscription.id}: {e}")
