import asyncio
import os
import threading
from typing import Callable, Optional

from backend import now_ms
from constants import SHUTDOWN_GRACE_SECONDS, WS_NORMAL_CLOSURE
from lifecycle import ConnectionLifecycle
from logging_config import get_logger
from schemas.envelopes import OutboundType

logger = get_logger(__name__)


class ShutdownCoordinator:
    """Drains every client connection when the process is asked to stop."""

    def __init__(
        self,
        lifecycle: ConnectionLifecycle,
        grace_seconds: float = SHUTDOWN_GRACE_SECONDS,
        exit_func: Callable[[int], None] = os._exit,
    ):
        self.lifecycle = lifecycle
        self.grace_seconds = grace_seconds
        self._exit = exit_func
        self._drain_task: Optional[asyncio.Task] = None
        self._watchdog: Optional[threading.Timer] = None

    @property
    def draining(self) -> bool:
        return self._drain_task is not None

    @property
    def watchdog_armed(self) -> bool:
        return self._watchdog is not None

    async def drain(self) -> int:
        """Notify and close all connections. Concurrent and repeated calls share one drain."""
        if self._drain_task is None:
            self._drain_task = asyncio.ensure_future(self._drain())
        return await asyncio.shield(self._drain_task)

    async def _drain(self) -> int:
        connections = self.lifecycle.registry.all()
        logger.info(f"Shutting down, draining {len(connections)} connections")

        notice = {
            "type": OutboundType.SERVER_SHUTDOWN.value,
            "message": "Server is shutting down",
            "timestamp": now_ms(),
        }
        for connection in connections:
            connection.send(notice)

        results = await asyncio.gather(
            *(c.transport.close(code=WS_NORMAL_CLOSURE, reason="Server shutting down") for c in connections),
            return_exceptions=True,
        )
        for connection, result in zip(connections, results):
            if isinstance(result, Exception):
                logger.debug(f"Error closing connection {connection.connection_id}: {result}")
            self.lifecycle.connection_closed(connection.connection_id)

        logger.info(f"Drained {len(connections)} connections")
        return len(connections)

    async def drain_with_deadline(self) -> None:
        try:
            await asyncio.wait_for(self.drain(), timeout=self.grace_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Graceful shutdown exceeded {self.grace_seconds}s, exiting")
            self._exit(1)

    def start_watchdog(self) -> None:
        """Force the process down if shutdown as a whole overruns the grace period."""
        if self._watchdog is not None:
            return
        self._watchdog = threading.Timer(self.grace_seconds, self._force_exit)
        self._watchdog.daemon = True
        self._watchdog.start()

    def cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _force_exit(self) -> None:
        logger.error(f"Shutdown did not complete within {self.grace_seconds}s, terminating")
        self._exit(1)
