"""
ParkFlow - Services Package
Business logic and service layer.
"""

from parkflow.services.broadcast_service import OccupancyBroadcaster, Subscription
from parkflow.services.spot_state_machine import SpotStateMachine, can_transition, validate_transition
from parkflow.services.session_service import SessionLifecycleManager
from parkflow.services.lot_service import LotService
from parkflow.services.sensor_simulator import SensorSimulator
from parkflow.services.container import ServiceContainer, get_services

__all__ = [
    "OccupancyBroadcaster",
    "Subscription",
    "SpotStateMachine",
    "can_transition",
    "validate_transition",
    "SessionLifecycleManager",
    "LotService",
    "SensorSimulator",
    "ServiceContainer",
    "get_services",
]
