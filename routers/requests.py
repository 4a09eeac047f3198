from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool

from constants import DEFAULT_MAX_PARTICIPANTS
from dependencies import get_services, get_viewer
from logging_config import get_logger
from models import RequestStatus, Viewer
from registry import RoomDraft
from schemas.requests import (
    ApproveRequestResponse,
    ResolveRequest,
    RoomRequestListResponse,
    RoomRequestResponse,
    SubmitRoomRequest,
)
from schemas.rooms import RoomResponse
from services import RoomServices

logger = get_logger(__name__)

requests_router = APIRouter(prefix="/room-requests", tags=["room-requests"])


@requests_router.post("", response_model=RoomRequestResponse, status_code=201)
async def submit_room_request(body: SubmitRoomRequest, viewer: Viewer = Depends(get_viewer), services: RoomServices = Depends(get_services)):
    draft = RoomDraft(
        meet_name=body.meet_name,
        visibility=body.visibility,
        community_id=body.community_id,
        max_participants=DEFAULT_MAX_PARTICIPANTS if body.max_participants is None else body.max_participants,
        scheduled_at=body.scheduled_at,
        password=body.password,
        capability_flags=body.flags,
    )
    request = await run_in_threadpool(services.workflow.submit, viewer, draft)
    return RoomRequestResponse.from_request(request)


@requests_router.get("", response_model=RoomRequestListResponse)
async def list_room_requests(
    scope: Optional[str] = Query(None, description="'platform', a community id, or omitted for everything reviewable"),
    status: RequestStatus = Query(RequestStatus.PENDING),
    viewer: Viewer = Depends(get_viewer),
    services: RoomServices = Depends(get_services),
):
    logger.info(f"Request listing from {viewer.uid}: scope={scope or 'all'}, status={status.value}")
    requests = services.workflow.list_requests(viewer, scope=scope, status=status)
    return RoomRequestListResponse(
        requests=[RoomRequestResponse.from_request(r) for r in requests],
        count=len(requests),
    )


@requests_router.get("/{request_id}", response_model=RoomRequestResponse)
async def get_room_request(request_id: str, viewer: Viewer = Depends(get_viewer), services: RoomServices = Depends(get_services)):
    return RoomRequestResponse.from_request(services.workflow.view(viewer, request_id))


@requests_router.post("/{request_id}/approve", response_model=ApproveRequestResponse)
async def approve_room_request(
    request_id: str,
    body: Optional[ResolveRequest] = None,
    viewer: Viewer = Depends(get_viewer),
    services: RoomServices = Depends(get_services),
):
    note = body.note if body else None
    room, invite_link = services.workflow.approve(viewer, request_id, note=note)
    return ApproveRequestResponse(
        room=RoomResponse.from_room(room, can_manage=services.policy.can_manage(viewer, room)),
        invite_link=invite_link,
    )


@requests_router.post("/{request_id}/reject", response_model=RoomRequestResponse)
async def reject_room_request(
    request_id: str,
    body: Optional[ResolveRequest] = None,
    viewer: Viewer = Depends(get_viewer),
    services: RoomServices = Depends(get_services),
):
    note = body.note if body else None
    return RoomRequestResponse.from_request(services.workflow.reject(viewer, request_id, note=note))
