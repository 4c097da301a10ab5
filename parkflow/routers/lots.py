"""
ParkFlow - Lots Router
Parking lot administration and statistics.
"""

from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
import logging

from parkflow.models.parking import (
    LotStats,
    ParkingLot,
    ParkingLotCreate,
    ParkingLotUpdate,
    ParkingLotWithStats,
    SpotListResponse,
    SpotType,
    parse_api_status,
)
from parkflow.models.user import UserProfile
from parkflow.security.firebase_auth import get_current_admin, get_current_user
from parkflow.services.container import ServiceContainer, get_services

# Configure logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/lots",
    tags=["Lots"],
    responses={401: {"description": "Unauthorized"}}
)


@router.get(
    "",
    response_model=List[ParkingLotWithStats],
    summary="List parking lots",
    description="Parking lots with their current statistics. Active lots only unless is_active is given; "
                "search matches name or location."
)
async def list_lots(
    is_active: Optional[bool] = Query(True, description="Filter by active flag"),
    search: Optional[str] = Query(None, max_length=100, description="Match on name or location"),
    user: UserProfile = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.lots.list_lots(is_active=is_active, search=search)


@router.post(
    "",
    response_model=ParkingLot,
    status_code=status.HTTP_201_CREATED,
    summary="Create a parking lot",
    description="Create a new parking lot. Admin only."
)
async def create_lot(
    lot: ParkingLotCreate,
    admin: UserProfile = Depends(get_current_admin),
    services: ServiceContainer = Depends(get_services),
):
    created = await services.lots.create_lot(lot)
    logger.info(f"Admin {admin.uid} created lot {created.id}")
    return created


@router.get(
    "/{lot_id}",
    response_model=ParkingLotWithStats,
    summary="Get a parking lot"
)
async def get_lot(
    lot_id: int,
    user: UserProfile = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.lots.get_lot(lot_id)


@router.put(
    "/{lot_id}",
    response_model=ParkingLot,
    summary="Update a parking lot",
    description="Change name, location, description or active flag. Admin only. Lot names stay unique."
)
async def update_lot(
    lot_id: int,
    lot_update: ParkingLotUpdate,
    admin: UserProfile = Depends(get_current_admin),
    services: ServiceContainer = Depends(get_services),
):
    updated = await services.lots.update_lot(lot_id, lot_update)
    logger.info(f"Admin {admin.uid} updated lot {lot_id}")
    return updated


@router.delete(
    "/{lot_id}",
    summary="Delete a parking lot",
    description="Delete a lot and all of its spots. Refused while any spot has an active session."
)
async def delete_lot(
    lot_id: int,
    admin: UserProfile = Depends(get_current_admin),
    services: ServiceContainer = Depends(get_services),
):
    await services.lots.delete_lot(lot_id)
    logger.info(f"Admin {admin.uid} deleted lot {lot_id}")
    return {"success": True, "message": f"Parking lot {lot_id} deleted"}


@router.get(
    "/{lot_id}/stats",
    response_model=LotStats,
    summary="Lot statistics"
)
async def get_lot_stats(
    lot_id: int,
    user: UserProfile = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.lots.lot_stats(lot_id)


@router.get(
    "/{lot_id}/spots",
    response_model=SpotListResponse,
    summary="Spots of a lot"
)
async def get_lot_spots(
    lot_id: int,
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
