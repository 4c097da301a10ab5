"""
ParkFlow - Simulator Router
Administrative control of the simulated occupancy sensors.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError
import logging

from parkflow.models.simulator import SimulatorConfig, SimulatorConfigUpdate, SimulatorStats
from parkflow.models.user import UserProfile
from parkflow.security.firebase_auth import get_current_admin
from parkflow.services.container import ServiceContainer, get_services

# Configure logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/simulator",
    tags=["Simulator"],
    dependencies=[Depends(get_current_admin)],
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin privileges required"},
    }
)


@router.post(
    "/start",
    summary="Start the sensor simulator",
    description="Starting a running simulator is a no-op."
)
async def start_simulator(services: ServiceContainer = Depends(get_services)):
    started = services.simulator.start()
    return {
        "success": True,
        "message": "Simulator started" if started else "Simulator already running",
        "stats": services.simulator.get_stats().model_dump(mode="json"),
    }


@router.post(
    "/stop",
    summary="Stop the sensor simulator",
    description="Stopping a stopped simulator is a no-op."
)
async def stop_simulator(services: ServiceContainer = Depends(get_services)):
    stopped = services.simulator.stop()
    return {
        "success": True,
        "message": "Simulator stopped" if stopped else "Simulator already stopped",
        "stats": services.simulator.get_stats().model_dump(mode="json"),
    }


@router.get(
    "/status",
    response_model=SimulatorStats,
    summary="Simulator status"
)
async def get_simulator_status(services: ServiceContainer = Depends(get_services)):
    return services.simulator.get_stats()


@router.post(
    "/failure/{spot_id}",
    summary="Simulate a sensor failure",
    description="Put a spot in maintenance; it recovers automatically if still in maintenance later."
)
async def simulate_failure(
    spot_id: int,
    services: ServiceContainer = Depends(get_services),
):
    spot = await services.simulator.simulate_sensor_failure(spot_id)
    if spot is None:
        return {
            "success": False,
            "message": f"Spot {spot_id} is protected from simulated failures in its current status",
            "spot": None,
        }

    return {
        "success": True,
        "message": f"Sensor failure simulated on spot {spot_id}",
        "recovery_in_seconds": services.simulator.config.recovery_delay_seconds,
        "spot": spot.model_dump(mode="json"),
    }


@router.put(
    "/config",
    response_model=SimulatorConfig,
    summary="Update simulator configuration",
    description="A running simulator is rescheduled under the new configuration."
)
async def update_simulator_config(
    update: SimulatorConfigUpdate,
    admin: UserProfile = Depends(get_current_admin),
    services: ServiceContainer = Depends(get_services),
):
    try:
        config = services.simulator.update_config(**update.model_dump(exclude_none=True))
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[{"field": ".".join(str(x) for x in err["loc"]), "message": err["msg"]} for err in e.errors()],
        )

    logger.info(f"Admin {admin.uid} updated simulator configuration")
    return config


@router.post(
    "/tick",
    summary="Run one simulation tick now"
)
async def run_tick(services: ServiceContainer = Depends(get_services)):
    spot = await services.simulator.tick()
    return {
        "success": spot is not None,
        "spot": spot.model_dump(mode="json") if spot else None,
    }
