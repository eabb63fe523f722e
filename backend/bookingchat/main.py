import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from bookingchat.core import config
from bookingchat.core.exceptions import (
    ChatServiceError,
    chat_service_error_handler,
    request_validation_error_handler,
)
from bookingchat.api.v1.routers import api_router
from bookingchat.sockets.chat_socket import router as chat_socket_router
from bookingchat.db.database import init_db
from bookingchat.db.database_redis import RedisManager
from bookingchat.realtime.relay import EventBus, RedisRelay
from bookingchat.realtime.room_registry import RoomRegistry

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="BookingChat API")

# CORS so the portal frontend can call the API from its own origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ChatServiceError, chat_service_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)

# One registry per process; the relay links processes when enabled
app.state.registry = RoomRegistry()
app.state.relay = RedisRelay(app.state.registry) if config.REALTIME_RELAY == "redis" else None
app.state.bus = EventBus(app.state.registry, app.state.relay)


@app.on_event("startup")
async def on_startup():
    """
    1. Creates missing tables (and demo data when enabled)
    2. Starts the cross-instance relay when REALTIME_RELAY=redis
    """
    await init_db()
    if app.state.relay is not None:
        app.state.relay.start()
    logger.info("BookingChat started (relay=%s, media=%s)", config.REALTIME_RELAY, config.MEDIA_BACKEND)


@app.on_event("shutdown")
async def on_shutdown():
    if app.state.relay is not None:
        await app.state.relay.stop()
    await RedisManager.close()


# REST API and WebSocket endpoints
app.include_router(api_router)
app.include_router(chat_socket_router)

if config.MEDIA_BACKEND == "local":
    Path(config.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
    app.mount(config.MEDIA_URL_PREFIX, StaticFiles(directory=config.UPLOAD_DIR), name="media")


@app.get("/health")
async def health():
    return {"status": "ok"}
