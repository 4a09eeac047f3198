from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from backend import RedisBackend
from communities import CommunityCapabilityProvider, RedisCommunityDirectory
from invites import InviteTokenIssuer
from join import JoinAuthorizer
from lifecycle import RoomLifecycleController
from policy import VisibilityPolicy
from provider import MeetingProvider, build_provider
from registry import RoomRegistry
from workflow import RequestApprovalWorkflow


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RoomServices:
    backend: RedisBackend
    communities: CommunityCapabilityProvider
    policy: VisibilityPolicy
    issuer: InviteTokenIssuer
    registry: RoomRegistry
    lifecycle: RoomLifecycleController
    workflow: RequestApprovalWorkflow
    joins: JoinAuthorizer
    clock: Callable[[], datetime]


def build_services(
    backend: RedisBackend,
    provider: Optional[MeetingProvider] = None,
    communities: Optional[CommunityCapabilityProvider] = None,
    clock: Callable[[], datetime] = utcnow,
    **workflow_options,
) -> RoomServices:
    """Wire the rooms core together, leaves first."""
    communities = communities or RedisCommunityDirectory(backend)
    policy = VisibilityPolicy(communities)
    issuer = InviteTokenIssuer(backend, clock)
    registry = RoomRegistry(backend, policy, communities, issuer, clock)
    lifecycle = RoomLifecycleController(backend, policy, issuer, clock)
    workflow = RequestApprovalWorkflow(backend, policy, registry, issuer, clock, **workflow_options)
    joins = JoinAuthorizer(backend, policy, lifecycle, issuer, provider or build_provider(), clock)
    return RoomServices(
        backend=backend,
        communities=communities,
        policy=policy,
        issuer=issuer,
        registry=registry,
        lifecycle=lifecycle,
        workflow=workflow,
        joins=joins,
        clock=clock,
    )
