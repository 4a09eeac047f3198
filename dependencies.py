from datetime import datetime
from functools import lru_cache
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException

from backend import RedisBackend, redis_backend
from logging_config import get_logger
from models import Viewer, normalize_platform_role
from provider import MeetingProvider, build_provider
from services import RoomServices, build_services, utcnow

logger = get_logger(__name__)


def get_backend() -> RedisBackend:
    return redis_backend


@lru_cache(maxsize=1)
def get_provider() -> MeetingProvider:
    return build_provider()


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_services(
    backend: RedisBackend = Depends(get_backend),
    provider: MeetingProvider = Depends(get_provider),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> RoomServices:
    return build_services(backend, provider=provider, clock=clock)


def get_viewer(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Viewer:
    # Authentication happens upstream; we only read the forwarded identity.
    uid = (x_user_id or "").strip()
    if not uid:
        logger.warning("Request rejected: missing X-User-Id header")
        raise HTTPException(status_code=401, detail="Authentication required")
    return Viewer(uid=uid, platform_role=normalize_platform_role(x_user_role))
