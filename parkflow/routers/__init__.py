"""
ParkFlow - Routers Package
API route handlers.
"""

from parkflow.routers.lots import router as lots_router
from parkflow.routers.spots import router as spots_router
from parkflow.routers.sessions import router as sessions_router
from parkflow.routers.simulator import router as simulator_router
from parkflow.routers.websocket import router as websocket_router

__all__ = [
    "lots_router",
    "spots_router",
    "sessions_router",
    "simulator_router",
    "websocket_router",
]
