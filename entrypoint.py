import asyncio
from typing import Optional

import uvicorn

from constants import HOST, LOG_FILE, LOG_LEVEL, PORT
from logging_config import setup_logging

# Setup logging before importing app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)

from app import app
from logging_config import get_logger
from shutdown import ShutdownCoordinator

logger = get_logger(__name__)


class SignalingServer(uvicorn.Server):
    """uvicorn server that drains signaling clients before it stops listening.

    The first SIGINT/SIGTERM starts the drain and arms the shutdown watchdog; uvicorn's
    own exit handling (closing the listening socket) runs once the drain finishes.
    A second signal goes straight to uvicorn.
    """

    def __init__(self, config: uvicorn.Config, coordinator: ShutdownCoordinator):
        super().__init__(config)
        self.coordinator = coordinator
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._drain_requested = False

    async def serve(self, sockets=None) -> None:
        self._loop = asyncio.get_running_loop()
        await super().serve(sockets=sockets)
        # Clean stop, the watchdog must not kill the process on its way out
        self.coordinator.cancel_watchdog()

    def handle_exit(self, sig, frame) -> None:
        if self._loop is None or self._drain_requested or self.should_exit:
            super().handle_exit(sig, frame)
            return
        self._drain_requested = True
        logger.info(f"Received signal {sig}, draining signaling connections")
        self.coordinator.start_watchdog()
        self._loop.call_soon_threadsafe(self._start_drain, sig, frame)

    def _start_drain(self, sig, frame) -> None:
        self._drain_task = self._loop.create_task(self.coordinator.drain_with_deadline(), name="shutdown_drain")
        self._drain_task.add_done_callback(lambda _: uvicorn.Server.handle_exit(self, sig, frame))


if __name__ == "__main__":
    logger.info(f"Starting signaling relay on {HOST}:{PORT}")
    config = uvicorn.Config(app, host=HOST, port=PORT, log_level=LOG_LEVEL.lower(), log_config=None)
    SignalingServer(config, app.state.shutdown).run()
