"""
ParkFlow - Sessions Router
Start and end parking sessions, and session history.
"""

from fastapi import APIRouter, Body, Depends, Query, status
from typing import Optional
from datetime import datetime
import logging

from parkflow.models.session import (
    EndSessionRequest,
    ParkingSession,
    SessionListResponse,
    SessionStats,
    SessionStatusFilter,
    StartSessionRequest,
)
from parkflow.models.user import UserProfile
from parkflow.security.firebase_auth import get_current_admin, get_current_user
from parkflow.services.container import ServiceContainer, get_services

# Configure logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/sessions",
    tags=["Sessions"],
    responses={401: {"description": "Unauthorized"}}
)


@router.post(
    "/start",
    response_model=ParkingSession,
    status_code=status.HTTP_201_CREATED,
    summary="Start a parking session",
    description="Occupy a free spot, or a spot reserved by the caller."
)
async def start_session(
    request: StartSessionRequest,
    user: UserProfile = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.sessions.start_session(user.uid, request.parking_spot_id, notes=request.notes)


@router.patch(
    "/{session_id}/end",
    response_model=ParkingSession,
    summary="End a parking session",
    description="Close the session and free its spot. Owner or admin only."
)
async def end_session(
    session_id: int,
    request: Optional[EndSessionRequest] = Body(default=None),
    user: UserProfile = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.sessions.end_session(
        session_id,
        user.uid,
        user.role,
        total_amount=request.total_amount if request else None,
    )


@router.get(
    "/active",
    summary="Active session",
    description="The caller's open session, if any."
)
async def get_active_session(
    user: UserProfile = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    session = await services.sessions.get_active_session(user.uid)
    return {
        "has_active_session": session is not None,
        "session": session.model_dump(mode="json") if session else None,
    }


@router.get(
    "/my-sessions",
    response_model=SessionListResponse,
    summary="Session history"
)
async def get_my_sessions(
    status_filter: SessionStatusFilter = Query(SessionStatusFilter.ALL, alias="status"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, description="Page size (DEFAULT_PAGE_SIZE when omitted)"),
    user: UserProfile = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.sessions.list_user_sessions(user.uid, status=status_filter, page=page, limit=limit)


@router.get(
    "/stats/summary",
    response_model=SessionStats,
    summary="Session statistics",
    description="Counts and average duration over 1d, 7d or 30d. Admin only."
)
async def get_session_stats(
    parking_lot_id: Optional[int] = Query(None),
    period: str = Query("7d", pattern="^(1d|7d|30d)$"),
    admin: UserProfile = Depends(get_current_admin),
    services: ServiceContainer = Depends(get_services),
):
    return await services.sessions.session_stats(lot_id=parking_lot_id, period=period)


@router.get(
    "",
    response_model=SessionListResponse,
    summary="List all sessions",
    description="Filter by status, lot, user and start date range. Admin only."
)
async def list_sessions(
    status_filter: SessionStatusFilter = Query(SessionStatusFilter.ALL, alias="status"),
    parking_lot_id: Optional[int] = Query(None),
    user_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, description="Page size (DEFAULT_PAGE_SIZE when omitted)"),
    admin: UserProfile = Depends(get_current_admin),
    services: ServiceContainer = Depends(get_services),
):
    return await services.sessions.list_sessions(
        status=status_filter,
        user_id=user_id,
        lot_id=parking_lot_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )


@router.get(
    "/{session_id}",
    response_model=ParkingSession,
    summary="Get a parking session",
    description="Owner or admin only."
)
async def get_session(
    session_id: int,
    user: UserProfile = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.sessions.get_session(session_id, user.uid, user.role)
