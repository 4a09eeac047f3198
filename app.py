from contextlib import asynccontextmanager

import redis
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend import RedisBackend
from constants import LOG_FILE, LOG_LEVEL
from dependencies import get_backend
from errors import RoomsError
from logging_config import get_logger, setup_logging
from routers.requests import requests_router
from routers.rooms import rooms_router

setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    backend = get_backend()
    try:
        backend.ping()
        logger.info("Connected to Redis")
    except redis.exceptions.RedisError as e:
        # Keep serving; /healthz reports the outage.
        logger.error(f"Redis is not reachable at startup: {e}")
    yield
    logger.info("Shutting down MeetRooms")


app = FastAPI(title="MeetRooms", lifespan=lifespan)

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)
app.include_router(requests_router)

logger.info("FastAPI application initialized")


@app.exception_handler(RoomsError)
async def rooms_error_handler(request: Request, exc: RoomsError):
    logger.warning(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def storage_error_handler(request: Request, exc: redis.exceptions.RedisError):
    logger.error(f"{request.method} {request.url.path} failed: storage unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={"ok": False, "kind": "StorageUnavailable", "message": "Storage is unavailable. Please retry.", "retryable": True},
    )


app.add_exception_handler(redis.exceptions.ConnectionError, storage_error_handler)
app.add_exception_handler(redis.exceptions.TimeoutError, storage_error_handler)


@app.get("/healthz")
async def healthz(backend: RedisBackend = Depends(get_backend)):
    try:
        redis_ok = backend.ping()
    except redis.exceptions.RedisError as e:
        logger.error(f"Health check failed: {e}")
        redis_ok = False
    return JSONResponse(
        status_code=200 if redis_ok else 503,
        content={"ok": redis_ok, "redis": "up" if redis_ok else "down"},
    )
