import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend import ConnectionRegistry, RoomStore
from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL, SHUTDOWN_GRACE_SECONDS, SWEEP_INTERVAL_SECONDS
from lifecycle import ConnectionLifecycle
from logging_config import get_logger, setup_logging
from relay import SignalingRelay
from routers.rooms import rooms_router
from routers.signaling import signaling_router
from shutdown import ShutdownCoordinator

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    lifecycle: ConnectionLifecycle = app.state.lifecycle
    sweeper = asyncio.create_task(lifecycle.run_sweeper(), name="stale_sweeper")
    logger.info("Signaling relay started")

    yield

    logger.info("Signaling relay stopping")
    await app.state.shutdown.drain()
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass


def create_app(
    registry: Optional[ConnectionRegistry] = None,
    rooms: Optional[RoomStore] = None,
    sweep_interval: float = SWEEP_INTERVAL_SECONDS,
    grace_seconds: float = SHUTDOWN_GRACE_SECONDS,
) -> FastAPI:
    """Build the relay app. Stores can be passed in so tests can inspect them."""
    registry = registry or ConnectionRegistry()
    rooms = rooms or RoomStore(registry)

    app = FastAPI(title="WebRTC Signaling Relay", lifespan=lifespan)
    app.state.registry = registry
    app.state.rooms = rooms
    app.state.relay = SignalingRelay(registry, rooms)
    app.state.lifecycle = ConnectionLifecycle(registry, rooms, sweep_interval=sweep_interval)
    app.state.shutdown = ShutdownCoordinator(app.state.lifecycle, grace_seconds=grace_seconds)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(rooms_router)
    app.include_router(signaling_router)
    return app


app = create_app()
