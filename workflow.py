import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from backend import RedisBackend
from constants import MAX_PENDING_REQUESTS, REQUEST_TTL_SECONDS
from errors import (
    AlreadyResolved,
    NotCommunityMember,
    NotFound,
    RequestExpired,
    TooManyPendingRequests,
    Unauthorized,
    ValidationFailed,
)
from invites import InviteTokenIssuer
from logging_config import get_logger
from models import RequestStatus, Room, RoomRequest, Viewer, Visibility
from policy import VisibilityPolicy
from registry import RoomDraft, RoomRegistry
from security import hash_password

logger = get_logger(__name__)

PLATFORM_SCOPE = "platform"


class RequestApprovalWorkflow:
    """Room requests from viewers who cannot create a room directly.

    A request is `pending` until exactly one of approve, reject or expiry.
    Expiry is derived from `expires_at` on every read; approve and reject
    check it again inside their transaction.
    """

    def __init__(
        self,
        backend: RedisBackend,
        policy: VisibilityPolicy,
        registry: RoomRegistry,
        issuer: InviteTokenIssuer,
        clock: Callable[[], datetime],
        ttl_seconds: int = REQUEST_TTL_SECONDS,
        max_pending: int = MAX_PENDING_REQUESTS,
    ):
        self.backend = backend
        self.policy = policy
        self.registry = registry
        self.issuer = issuer
        self.clock = clock
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_pending = max_pending

    def submit(self, requester: Viewer, draft: RoomDraft) -> RoomRequest:
        logger.info(f"Room request from {requester.uid}: name={draft.meet_name!r}, visibility={draft.visibility.value}")
        rights = self.policy.resolve(requester, draft.visibility, draft.community_id or None)
        draft = self.registry.validate_draft(draft)
        if rights.can_create_directly:
            raise ValidationFailed("You can create this room directly. Use Create Room instead of a request.")
        if draft.visibility == Visibility.COURSE_EXCLUSIVE and not self.policy.is_member(requester, draft.community_id):
            logger.warning(f"Room request refused: {requester.uid} is not a member of {draft.community_id}")
            raise NotCommunityMember("You must be a member of the selected community to request a course-exclusive room.")
        password_hash = hash_password(draft.password) if draft.password else None
        requester_key = self.backend.requester_key(requester.uid)

        def txn(pipe):
            now = self.clock()
            own = [self.backend.read_request(pipe, rid) for rid in self.backend.requester_request_ids(pipe, requester.uid)]
            open_count = sum(1 for r in own if r is not None and r.effective_status(now) == RequestStatus.PENDING)
            if open_count >= self.max_pending:
                raise TooManyPendingRequests(
                    f"You already have {open_count} pending room requests. Wait for review before creating more."
                )
            request = RoomRequest(
                id=uuid.uuid4().hex,
                meet_name=draft.meet_name,
                visibility=draft.visibility,
                community_id=draft.community_id,
                requester_uid=requester.uid,
                status=RequestStatus.PENDING,
                expires_at=now + self.ttl,
                max_participants=draft.max_participants,
                scheduled_at=draft.scheduled_at,
                password_hash=password_hash,
                capability_flags=draft.capability_flags,
                created_at=now,
                updated_at=now,
            )
            pipe.multi()
            self.backend.write_request(pipe, request, is_new=True)
            return request

        request = self.backend.atomic(txn, requester_key)
        self.backend.record_event(
            None, requester.uid, "request_room", self.clock(),
            {"request_id": request.id, "visibility": request.visibility.value, "community_id": request.community_id},
        )
        logger.info(f"Room request {request.id} stored, expires_at={request.expires_at.isoformat()}")
        return request

    def get(self, request_id: str) -> RoomRequest:
        request = self.backend.get_request(request_id)
        if request is None:
            raise NotFound("Room request not found.")
        return request.as_of(self.clock())

    def _authorize_scope(self, approver: Viewer, scope: Optional[str]):
        if scope == PLATFORM_SCOPE:
            if not approver.is_platform_admin:
                raise Unauthorized("Only platform owners and admins review platform-wide requests.")
        elif scope:
            if not self.policy.can_review(approver, scope):
                raise Unauthorized("You are not allowed to review requests for this community.")
        elif not approver.is_platform_admin and not self.policy.reviewable_communities(approver):
            raise Unauthorized("Not allowed to review room requests.")

    def _in_scope(self, request: RoomRequest, scope: Optional[str]) -> bool:
        if scope == PLATFORM_SCOPE:
            return request.community_id is None
        if scope:
            return request.community_id == scope
        return True

    def list_requests(self, approver: Viewer, scope: Optional[str] = None, status: RequestStatus = RequestStatus.PENDING) -> list[RoomRequest]:
        """Requests `approver` may review, newest first, with expiry applied."""
        self._authorize_scope(approver, scope)
        now = self.clock()
        reviewable = None if approver.is_platform_admin else set(self.policy.reviewable_communities(approver))
        results = []
        for request in self.backend.get_requests(self.backend.list_request_ids()):
            if not self._in_scope(request, scope):
                continue
            if reviewable is not None and request.community_id not in reviewable:
                continue
            request = request.as_of(now)
            if request.status != status:
                continue
            results.append(request)
        logger.debug(f"{len(results)} {status.value} requests visible to {approver.uid} in scope {scope or 'all'}")
        return results

    def list_pending(self, approver: Viewer, scope: Optional[str] = None) -> list[RoomRequest]:
        return self.list_requests(approver, scope, RequestStatus.PENDING)

    def count_pending_for(self, approver: Viewer) -> int:
        try:
            return len(self.list_pending(approver))
        except Unauthorized:
            return 0

    def _guard(self, approver: Viewer, request_id: str, action: str) -> RoomRequest:
        request = self.backend.get_request(request_id)
        if request is None:
            logger.warning(f"{action} failed: request {request_id} not found")
            raise NotFound("Room request not found.")
        if request.status == RequestStatus.EXPIRED:
            raise RequestExpired("This request has expired.")
        if request.status != RequestStatus.PENDING:
            raise AlreadyResolved("This request has already been reviewed.")
        if request.is_expired(self.clock()):
            self._persist_expiry(request_id)
            logger.warning(f"{action} failed: request {request_id} expired at {request.expires_at.isoformat()}")
            raise RequestExpired("This request has expired.")
        if not self.policy.can_review(approver, request.community_id):
            logger.warning(f"{action} failed: {approver.uid} cannot review request {request_id}")
            raise Unauthorized(f"You are not allowed to {action} this request.")
        if approver.uid == request.requester_uid:
            raise Unauthorized(f"You cannot {action} your own room request.")
        return request

    def _check_pending(self, request: Optional[RoomRequest], now: datetime) -> bool:
        """Write-time guard. Returns False when the request has just expired."""
        if request is None:
            raise NotFound("Room request not found.")
        if request.status == RequestStatus.EXPIRED:
            raise RequestExpired("This request has expired.")
        if request.status != RequestStatus.PENDING:
            raise AlreadyResolved("This request has already been reviewed.")
        return not request.is_expired(now)

    def _expire(self, pipe, request: RoomRequest, now: datetime):
        pipe.multi()
        self.backend.write_request(pipe, request.model_copy(update={"status": RequestStatus.EXPIRED, "updated_at": now}))

    def _persist_expiry(self, request_id: str):
        def txn(pipe):
            now = self.clock()
            request = self.backend.read_request(pipe, request_id)
            if request is not None and request.is_expired(now):
                self._expire(pipe, request, now)

        self.backend.atomic(txn, self.backend.request_key(request_id))

    def approve(self, approver: Viewer, request_id: str, note: Optional[str] = None) -> tuple[Room, Optional[str]]:
        """Approve a pending request and materialize its room in one commit.

        Returns the room and, for private rooms, the invite link for the
        approver to share.
        """
        logger.info(f"Approve request {request_id} by {approver.uid}")
        self._guard(approver, request_id, "approve")
        request_key = self.backend.request_key(request_id)

        def txn(pipe):
            now = self.clock()
            request = self.backend.read_request(pipe, request_id)
            if not self._check_pending(request, now):
                self._expire(pipe, request, now)
                return None, None
            room, token = self.registry.build_room(
                pipe,
                meet_name=request.meet_name,
                visibility=request.visibility,
                community_id=request.community_id,
                creator_uid=request.requester_uid,
                max_participants=request.max_participants,
                scheduled_at=request.scheduled_at,
                password_hash=request.password_hash,
                capability_flags=request.capability_flags,
                source_request_id=request.id,
            )
            approved = request.model_copy(update={
                "status": RequestStatus.APPROVED,
                "resolution_note": note or None,
                "resolved_by": approver.uid,
                "resolved_at": now,
                "approved_room_id": room.id,
                "updated_at": now,
            })
            pipe.multi()
            self.backend.write_room(pipe, room, is_new=True)
            self.backend.write_request(pipe, approved)
            return room, token

        room, token = self.backend.atomic(txn, request_key, self.backend.meet_ids_key)
        if room is None:
            logger.warning(f"Approve failed: request {request_id} expired before commit")
            raise RequestExpired("This request has expired.")
        self.backend.record_event(
            room.id, approver.uid, "approve_request", self.clock(),
            {"request_id": request_id, "requester_uid": room.creator_uid, "visibility": room.visibility.value},
        )
        logger.info(f"Request {request_id} approved by {approver.uid}: room {room.id} ({room.meet_id})")
        return room, self.issuer.build_link(room.meet_id, token) if token else None

    def reject(self, approver: Viewer, request_id: str, note: Optional[str] = None) -> RoomRequest:
        logger.info(f"Reject request {request_id} by {approver.uid}")
        self._guard(approver, request_id, "reject")

        def txn(pipe):
            now = self.clock()
            request = self.backend.read_request(pipe, request_id)
            if not self._check_pending(request, now):
                self._expire(pipe, request, now)
                return None
            rejected = request.model_copy(update={
                "status": RequestStatus.REJECTED,
                "resolution_note": note or None,
                "resolved_by": approver.uid,
                "resolved_at": now,
                "updated_at": now,
            })
            pipe.multi()
            self.backend.write_request(pipe, rejected)
            return rejected

        rejected = self.backend.atomic(txn, self.backend.request_key(request_id))
        if rejected is None:
            logger.warning(f"Reject failed: request {request_id} expired before commit")
            raise RequestExpired("This request has expired.")
        self.backend.record_event(
            None, approver.uid, "reject_request", self.clock(),
            {"request_id": request_id, "requester_uid": rejected.requester_uid, "note": rejected.resolution_note},
        )
        logger.info(f"Request {request_id} rejected by {approver.uid}")
        return rejected

    def view(self, viewer: Viewer, request_id: str) -> RoomRequest:
        """A single request, for its requester or anyone who may review it."""
        request = self.get(request_id)
        if viewer.uid != request.requester_uid and not self.policy.can_review(viewer, request.community_id):
            raise Unauthorized("You are not allowed to view this request.")
        return request
