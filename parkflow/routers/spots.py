"""
ParkFlow - Spots Router
Spot administration, status overrides and reservations.
"""

from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
import logging

from parkflow.models.parking import (
    ParkingSpot,
    ParkingSpotCreate,
    ParkingSpotUpdate,
    SpotListResponse,
    SpotSnapshot,
    SpotType,
    StatusUpdateRequest,
    parse_api_status,
)
from parkflow.models.user import UserProfile
from parkflow.security.firebase_auth import get_current_admin, get_current_user
from parkflow.services.container import ServiceContainer, get_services

# Configure logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/spots",
    tags=["Spots"],
    responses={401: {"description": "Unauthorized"}}
)


@router.get(
    "",
    response_model=SpotListResponse,
    summary="List parking spots",
    description="Active spots, filterable by lot, status (internal or display code) and type."
)
async def list_spots(
    lot_id: Optional[int] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    spot_type: Optional[SpotType] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, description="Page size (DEFAULT_PAGE_SIZE when omitted)"),
    user: UserProfile = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.lots.list_spots(
        lot_id=lot_id,
        status=parse_api_status(status_filter) if status_filter else None,
        spot_type=spot_type,
        page=page,
        limit=limit,
    )


@router.get(
    "/snapshot",
    response_model=List[SpotSnapshot],
    summary="Current status of every spot",
    description="The same snapshot WebSocket subscribers receive on request."
)
async def get_snapshot(
    lot_id: Optional[int] = Query(None),
    user: UserProfile = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.lots.snapshot(lot_id)


@router.get(
    "/{spot_id}",
    response_model=ParkingSpot,
    summary="Get a parking spot"
)
async def get_spot(
    spot_id: int,
    user: UserProfile = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.lots.get_spot(spot_id)


@router.post(
    "",
    response_model=ParkingSpot,
    status_code=status.HTTP_201_CREATED,
    summary="Create a parking spot",
    description="Create a free spot in a lot. Admin only."
)
async def create_spot(
    spot: ParkingSpotCreate,
    admin: UserProfile = Depends(get_current_admin),
    services: ServiceContainer = Depends(get_services),
):
    return await services.lots.create_spot(spot, created_by=admin.uid)


@router.put(
    "/{spot_id}",
    response_model=ParkingSpot,
    summary="Update a parking spot",
    description="Change type, lot or active flag. Status is changed through /status. Admin only."
)
async def update_spot(
    spot_id: int,
    update: ParkingSpotUpdate,
    admin: UserProfile = Depends(get_current_admin),
    services: ServiceContainer = Depends(get_services),
):
    return await services.lots.update_spot(spot_id, update)


@router.delete(
    "/{spot_id}",
    summary="Delete a parking spot",
    description="Refused while the spot has an active session. Admin only."
)
async def delete_spot(
    spot_id: int,
    admin: UserProfile = Depends(get_current_admin),
    services: ServiceContainer = Depends(get_services),
):
    await services.lots.delete_spot(spot_id)
    logger.info(f"Admin {admin.uid} deleted spot {spot_id}")
    return {"success": True, "message": f"Parking spot {spot_id} deleted"}


@router.patch(
    "/{spot_id}/status",
    response_model=ParkingSpot,
    summary="Override spot status",
    description="Move a spot along an allowed transition. Admin only."
)
async def update_spot_status(
    spot_id: int,
    request: StatusUpdateRequest,
    admin: UserProfile = Depends(get_current_admin),
    services: ServiceContainer = Depends(get_services),
):
    """
    Administrative status change.

    Accepts internal codes (free, occupied, reserved, maintenance) as well as
    display codes (available, ...).
    """
    target = parse_api_status(request.status)
    return await services.state_machine.admin_override(spot_id, target, admin_id=admin.uid)


@router.post(
    "/{spot_id}/reserve",
    response_model=ParkingSpot,
    summary="Reserve a spot",
    description="Reserve a free spot. A user holds at most one reservation."
)
async def reserve_spot(
    spot_id: int,
    user: UserProfile = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.state_machine.reserve(spot_id, user.uid)


@router.delete(
    "/{spot_id}/reservation",
    response_model=ParkingSpot,
    summary="Cancel a reservation",
    description="Only the reserving user or an admin may cancel."
)
async def cancel_reservation(
    spot_id: int,
    user: UserProfile = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.state_machine.cancel_reservation(spot_id, user.uid, user.role)
