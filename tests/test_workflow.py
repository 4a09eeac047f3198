from datetime import timedelta

import pytest

from conftest import T0, run_concurrently
from errors import (
    AlreadyResolved,
    InvalidVisibilityForContext,
    NotCommunityMember,
    NotFound,
    RequestExpired,
    TooManyPendingRequests,
    Unauthorized,
    ValidationFailed,
)
from models import CommunityRole, RequestStatus, RoomState, Visibility
from registry import RoomDraft
from security import verify_password


def draft(**fields):
    fields.setdefault("meet_name", "Algo Study")
    fields.setdefault("visibility", Visibility.PRIVATE)
    return RoomDraft(**fields)


def test_submit_creates_pending_request(services, member):
    request = services.workflow.submit(member, draft(max_participants=6))
    assert request.status == RequestStatus.PENDING
    assert request.requester_uid == "mia"
    assert request.expires_at == T0 + timedelta(hours=24)
    assert services.workflow.get(request.id).max_participants == 6
    assert services.backend.redis_client.llen("requests:events") == 1


def test_submit_rejects_callers_with_direct_rights(services, admin, moderator):
    with pytest.raises(ValidationFailed):
        services.workflow.submit(admin, draft())
    with pytest.raises(ValidationFailed):
        services.workflow.submit(moderator, draft(visibility=Visibility.COURSE_EXCLUSIVE, community_id="c1"))


def test_submit_checks_visibility_context(services, member):
    with pytest.raises(InvalidVisibilityForContext):
        services.workflow.submit(member, draft(visibility=Visibility.PUBLIC, community_id="c1"))


def test_course_request_requires_membership(services, outsider, member):
    with pytest.raises(NotCommunityMember):
        services.workflow.submit(outsider, draft(visibility=Visibility.COURSE_EXCLUSIVE, community_id="c1"))
    request = services.workflow.submit(member, draft(visibility=Visibility.COURSE_EXCLUSIVE, community_id="c1"))
    assert request.community_id == "c1"


def test_request_password_is_hashed(services, member):
    request = services.workflow.submit(member, draft(password="hunter22"))
    assert verify_password("hunter22", request.password_hash)


def test_pending_request_limit(services, member, admin, clock):
    first = services.workflow.submit(member, draft(meet_name="one"))
    services.workflow.submit(member, draft(meet_name="two"))
    services.workflow.submit(member, draft(meet_name="three"))
    with pytest.raises(TooManyPendingRequests):
        services.workflow.submit(member, draft(meet_name="four"))
    services.workflow.reject(admin, first.id)
    assert services.workflow.submit(member, draft(meet_name="four")).status == RequestStatus.PENDING


def test_expired_requests_do_not_count_toward_limit(services, member, clock):
    for name in ("one", "two", "three"):
        services.workflow.submit(member, draft(meet_name=name))
    clock.advance(hours=25)
    assert services.workflow.submit(member, draft(meet_name="four")).status == RequestStatus.PENDING


def test_list_pending_is_scoped(services, admin, moderator, member, outsider):
    platform = services.workflow.submit(outsider, draft(meet_name="platform"))
    course = services.workflow.submit(member, draft(meet_name="course", visibility=Visibility.COURSE_EXCLUSIVE, community_id="c1"))

    assert {r.id for r in services.workflow.list_pending(admin)} == {platform.id, course.id}
    assert [r.id for r in services.workflow.list_pending(admin, "platform")] == [platform.id]
    assert [r.id for r in services.workflow.list_pending(moderator)] == [course.id]
    assert [r.id for r in services.workflow.list_pending(moderator, "c1")] == [course.id]
    with pytest.raises(Unauthorized):
        services.workflow.list_pending(moderator, "platform")
    with pytest.raises(Unauthorized):
        services.workflow.list_pending(moderator, "c2")
    with pytest.raises(Unauthorized):
        services.workflow.list_pending(member)
    assert services.workflow.count_pending_for(member) == 0
    assert services.workflow.count_pending_for(admin) == 2


def test_list_pending_excludes_expired(services, admin, member, clock):
    request = services.workflow.submit(member, draft())
    clock.advance(hours=24)
    assert services.workflow.list_pending(admin) == []
    expired = services.workflow.list_requests(admin, status=RequestStatus.EXPIRED)
    assert [r.id for r in expired] == [request.id]
    # Reads never write the derived status back.
    assert services.backend.get_request(request.id).status == RequestStatus.PENDING


def test_approve_creates_room_atomically(services, admin, member):
    request = services.workflow.submit(member, draft(max_participants=4, password="hunter22"))
    room, link = services.workflow.approve(admin, request.id, note="enjoy")

    assert room.state == RoomState.SCHEDULED
    assert room.visibility == Visibility.PRIVATE
    assert room.creator_uid == "mia"
    assert room.max_participants == 4
    assert room.source_request_id == request.id
    assert room.has_password
    assert link and services.issuer.validate(room.id, link.split("invite=")[1])

    stored = services.workflow.get(request.id)
    assert stored.status == RequestStatus.APPROVED
    assert stored.approved_room_id == room.id
    assert stored.resolved_by == "ada"
    assert stored.resolution_note == "enjoy"
    assert services.registry.get(room.id).meet_id == room.meet_id
    assert services.backend.list_events(room.id)[0]["action"] == "approve_request"


def test_approve_course_request_by_moderator(services, moderator, member):
    request = services.workflow.submit(member, draft(visibility=Visibility.COURSE_EXCLUSIVE, community_id="c1"))
    room, link = services.workflow.approve(moderator, request.id)
    assert link is None
    assert room.community_id == "c1"
    assert room.id in services.backend.list_room_ids("c1")


def test_approve_twice_creates_one_room(services, admin, platform_owner, member):
    request = services.workflow.submit(member, draft())
    services.workflow.approve(admin, request.id)
    with pytest.raises(AlreadyResolved):
        services.workflow.approve(platform_owner, request.id)
    with pytest.raises(AlreadyResolved):
        services.workflow.reject(platform_owner, request.id)
    assert len(services.backend.list_room_ids()) == 1


def test_concurrent_approvals_create_one_room(services, admin, platform_owner, member):
    request = services.workflow.submit(member, draft())
    approvers = [admin, platform_owner] * 4
    results, errors = run_concurrently(8, lambda i: services.workflow.approve(approvers[i], request.id))
    assert len(results) == 1
    assert len(errors) == 7
    assert all(isinstance(e, AlreadyResolved) for e in errors)
    assert services.backend.list_room_ids() == [results[0][0].id]


def test_reject_stores_note_and_creates_nothing(services, admin, member):
    request = services.workflow.submit(member, draft())
    rejected = services.workflow.reject(admin, request.id, note="duplicate of Monday's room")
    assert rejected.status == RequestStatus.REJECTED
    assert rejected.resolution_note == "duplicate of Monday's room"
    assert services.backend.list_room_ids() == []
    assert services.workflow.list_requests(admin, status=RequestStatus.REJECTED)[0].id == request.id


def test_approve_expired_request(services, admin, member, clock):
    request = services.workflow.submit(member, draft())
    clock.advance(hours=24, seconds=1)
    assert services.workflow.get(request.id).status == RequestStatus.EXPIRED
    with pytest.raises(RequestExpired):
        services.workflow.approve(admin, request.id)
    assert services.backend.get_request(request.id).status == RequestStatus.EXPIRED
    with pytest.raises(RequestExpired):
        services.workflow.reject(admin, request.id)
    assert services.backend.list_room_ids() == []


def test_expiry_is_rechecked_at_write_time(services, admin, member, clock, monkeypatch):
    request = services.workflow.submit(member, draft())
    clock.advance(hours=23, minutes=59)
    guard = services.workflow._guard

    def slow_guard(*args):
        # The request lapses between the guard and the commit.
        checked = guard(*args)
        clock.advance(minutes=2)
        return checked

    monkeypatch.setattr(services.workflow, "_guard", slow_guard)
    with pytest.raises(RequestExpired):
        services.workflow.approve(admin, request.id)
    assert services.backend.get_request(request.id).status == RequestStatus.EXPIRED
    assert services.backend.list_room_ids() == []


def test_reviewer_authority(services, moderator, member, outsider):
    platform = services.workflow.submit(outsider, draft())
    with pytest.raises(Unauthorized):
        services.workflow.approve(moderator, platform.id)
    course = services.workflow.submit(member, draft(visibility=Visibility.COURSE_EXCLUSIVE, community_id="c1"))
    with pytest.raises(Unauthorized):
        services.workflow.reject(outsider, course.id)
    with pytest.raises(NotFound):
        services.workflow.approve(moderator, "missing")


def test_requester_cannot_review_own_request(services, directory, member):
    request = services.workflow.submit(member, draft(visibility=Visibility.COURSE_EXCLUSIVE, community_id="c1"))
    directory.set_role("c1", member.uid, CommunityRole.MODERATOR)
    with pytest.raises(Unauthorized):
        services.workflow.approve(member, request.id)


def test_view_request(services, member, other_member, moderator):
    request = services.workflow.submit(member, draft(visibility=Visibility.COURSE_EXCLUSIVE, community_id="c1"))
    assert services.workflow.view(member, request.id).id == request.id
    assert services.workflow.view(moderator, request.id).id == request.id
    with pytest.raises(Unauthorized):
        services.workflow.view(other_member, request.id)
