from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool

from constants import DEFAULT_MAX_PARTICIPANTS
from dependencies import get_services, get_viewer
from errors import NotFound
from logging_config import get_logger
from models import Room, RoomState, Viewer
from policy import COMMUNITY_MANAGER_ROLES, decide
from registry import RoomDraft
from schemas.rooms import (
    BootstrapResponse,
    CommunityCapabilities,
    ContextRightsResponse,
    CreateRoomRequest,
    CreateRoomResponse,
    InviteResponse,
    JoinRoomRequest,
    JoinRoomResponse,
    LeaveRoomResponse,
    RoomEvent,
    RoomListResponse,
    RoomResponse,
    SessionResponse,
    ViewerSummary,
)
from services import RoomServices

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def room_response(services: RoomServices, viewer: Viewer, room: Room, with_count: bool = False) -> RoomResponse:
    active = None
    if with_count:
        active = services.backend.participant_count(services.backend.redis_client, room.id)
    return RoomResponse.from_room(room, can_manage=services.policy.can_manage(viewer, room), active_participants=active)


@rooms_router.get("/bootstrap", response_model=BootstrapResponse)
async def bootstrap(viewer: Viewer = Depends(get_viewer), services: RoomServices = Depends(get_services)):
    """What the viewer may do: platform rights, per-community rights, review backlog."""
    logger.info(f"Bootstrap request from {viewer.uid} ({viewer.platform_role.value})")
    platform = services.policy.rights_for(viewer, None)

    communities = []
    for community in services.communities.list_communities():
        role = services.policy.community_role(viewer, community["id"])
        if role is None and not viewer.is_platform_admin:
            continue
        rights = decide(viewer, community["id"], role)
        communities.append(CommunityCapabilities(
            id=community["id"],
            name=community["name"],
            code=community.get("code"),
            membership=role.value if role else None,
            is_moderator=role in COMMUNITY_MANAGER_ROLES,
            can_create_here=rights.can_create_directly,
            can_request_here=rights.must_request,
            allowed_visibilities=rights.allowed_visibilities,
        ))

    can_review = viewer.is_platform_admin or any(c.is_moderator for c in communities)
    return BootstrapResponse(
        viewer=ViewerSummary(
            uid=viewer.uid,
            platform_role=viewer.platform_role.value,
            can_create_public_rooms=platform.can_create_directly,
            can_review_requests=can_review,
        ),
        platform=ContextRightsResponse(
            can_create_directly=platform.can_create_directly,
            allowed_visibilities=platform.allowed_visibilities,
        ),
        communities=communities,
        pending_requests_to_review=services.workflow.count_pending_for(viewer) if can_review else 0,
    )


@rooms_router.get("", response_model=RoomListResponse)
async def list_rooms(
    context: str = Query("all", pattern="^(all|platform|community)$"),
    community_id: Optional[str] = Query(None),
    state: Optional[RoomState] = Query(None),
    mine: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(18, ge=1, le=50),
    viewer: Viewer = Depends(get_viewer),
    services: RoomServices = Depends(get_services),
):
    rooms = services.registry.list_rooms(
        viewer,
        context=context,
        community_id=community_id,
        state=state,
        mine_only=mine,
        page=page,
        page_size=page_size,
    )
    return RoomListResponse(
        rooms=[room_response(services, viewer, room) for room in rooms],
        page=page,
        page_size=page_size,
        count=len(rooms),
    )


@rooms_router.post("", response_model=CreateRoomResponse, status_code=201)
async def create_room(room: CreateRoomRequest, viewer: Viewer = Depends(get_viewer), services: RoomServices = Depends(get_services)):
    draft = RoomDraft(
        meet_name=room.meet_name,
        visibility=room.visibility,
        community_id=room.community_id,
        max_participants=DEFAULT_MAX_PARTICIPANTS if room.max_participants is None else room.max_participants,
        scheduled_at=room.scheduled_at,
        password=room.password,
        capability_flags=room.flags,
    )
    created, invite_link = await run_in_threadpool(services.registry.create, viewer, draft)
    return CreateRoomResponse(room=room_response(services, viewer, created), invite_link=invite_link)


@rooms_router.get("/search", response_model=RoomResponse)
async def find_room(meet_id: str = Query(..., min_length=1, max_length=32), viewer: Viewer = Depends(get_viewer), services: RoomServices = Depends(get_services)):
    logger.info(f"Room lookup by meet id {meet_id} from {viewer.uid}")
    room = services.registry.find_by_meet_id(viewer, meet_id)
    return room_response(services, viewer, room)


@rooms_router.get("/{room_id}", response_model=RoomResponse)
async def get_room_details(room_id: str, viewer: Viewer = Depends(get_viewer), services: RoomServices = Depends(get_services)):
    room = services.registry.get(room_id)
    if not services.policy.can_see(viewer, room):
        # Hidden rooms look missing.
        logger.warning(f"Room details refused: {viewer.uid} cannot see room {room_id}")
        raise NotFound("Room not found.")
    return room_response(services, viewer, room, with_count=True)


@rooms_router.post("/{room_id}/start", response_model=RoomResponse)
async def start_room(room_id: str, viewer: Viewer = Depends(get_viewer), services: RoomServices = Depends(get_services)):
    room = services.lifecycle.start(viewer, room_id)
    return room_response(services, viewer, room)


@rooms_router.post("/{room_id}/end", response_model=RoomResponse)
async def end_room(room_id: str, viewer: Viewer = Depends(get_viewer), services: RoomServices = Depends(get_services)):
    room = services.lifecycle.end(viewer, room_id)
    return room_response(services, viewer, room)


@rooms_router.post("/{room_id}/cancel", response_model=RoomResponse)
async def cancel_room(room_id: str, viewer: Viewer = Depends(get_viewer), services: RoomServices = Depends(get_services)):
    room = services.lifecycle.cancel(viewer, room_id)
    return room_response(services, viewer, room)


@rooms_router.post("/{room_id}/join", response_model=JoinRoomResponse)
async def join_room(
    room_id: str,
    join_room_request: Optional[JoinRoomRequest] = None,
    viewer: Viewer = Depends(get_viewer),
    services: RoomServices = Depends(get_services),
):
    join_room_request = join_room_request or JoinRoomRequest()
    # Blocks on the meeting provider for up to its timeout.
    result = await run_in_threadpool(
        services.joins.join,
        viewer,
        room_id,
        invite_token=join_room_request.invite_token,
        password=join_room_request.password,
    )
    return JoinRoomResponse(
        join_url=result.join_url,
        room_id=result.room.id,
        meet_id=result.room.meet_id,
        state=result.room.state,
        already_joined=result.already_joined,
    )


@rooms_router.post("/{room_id}/leave", response_model=LeaveRoomResponse)
async def leave_room(room_id: str, viewer: Viewer = Depends(get_viewer), services: RoomServices = Depends(get_services)):
    left = services.joins.leave(viewer, room_id)
    room = services.registry.get(room_id)
    return LeaveRoomResponse(left=left, room_id=room.id, state=room.state)


@rooms_router.get("/{room_id}/session", response_model=SessionResponse)
async def get_session(room_id: str, viewer: Viewer = Depends(get_viewer), services: RoomServices = Depends(get_services)):
    session = services.joins.session(viewer, room_id)
    return SessionResponse(
        room_id=session.room.id,
        meet_id=session.room.meet_id,
        state=session.room.state,
        active_participants=session.active_participants,
        participant_status=session.participant_status,
        can_manage=session.can_manage,
        ended_at=session.room.ended_at,
        updated_at=session.room.updated_at,
    )


@rooms_router.post("/{room_id}/invite/rotate", response_model=InviteResponse)
async def rotate_invite(room_id: str, viewer: Viewer = Depends(get_viewer), services: RoomServices = Depends(get_services)):
    logger.info(f"Invite rotation request for {room_id} from {viewer.uid}")
    return InviteResponse(invite_link=services.lifecycle.rotate_invite(viewer, room_id))


@rooms_router.get("/{room_id}/events", response_model=list[RoomEvent])
async def list_room_events(room_id: str, viewer: Viewer = Depends(get_viewer), services: RoomServices = Depends(get_services)):
    return [RoomEvent(**event) for event in services.lifecycle.list_events(viewer, room_id)]
