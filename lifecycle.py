import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

from backend import Connection, ConnectionRegistry, RoomStore, now_ms
from constants import SWEEP_INTERVAL_SECONDS, WS_INTERNAL_ERROR
from logging_config import get_logger
from schemas.envelopes import OutboundType
from transport import Transport

logger = get_logger(__name__)


@dataclass
class SweepStats:
    reaped: List[Connection] = field(default_factory=list)
    evicted_members: int = 0

    @property
    def closed_connections(self) -> int:
        return len(self.reaped)

    @property
    def total(self) -> int:
        return self.closed_connections + self.evicted_members


class ConnectionLifecycle:
    """Accepts connections, tears them down on close, and periodically reaps stale state."""

    def __init__(self, registry: ConnectionRegistry, rooms: RoomStore, sweep_interval: float = SWEEP_INTERVAL_SECONDS):
        self.registry = registry
        self.rooms = rooms
        self.sweep_interval = sweep_interval

    def connection_opened(self, transport: Transport) -> Connection:
        connection = self.registry.register(transport)
        connection.send({
            "type": OutboundType.CONNECTED.value,
            "connectionId": connection.connection_id,
            "timestamp": now_ms(),
        })
        logger.info(f"Connection {connection.connection_id} opened ({self.registry.count()} active)")
        return connection

    def connection_closed(self, connection_id: str) -> Optional[Connection]:
        """Leave the bound room silently, tell the others, forget the connection.

        Transport errors go through here too. Calling it twice is harmless.
        """
        connection = self.registry.get(connection_id)
        if connection is None:
            return None

        result = self.rooms.leave_room(connection)
        if result is not None and result.remaining:
            notified = self.rooms.broadcast_to_others(
                result.room_id,
                connection_id,
                {"type": OutboundType.USER_LEFT.value, "roomId": result.room_id, "userId": result.user_id},
            )
            logger.debug(f"Notified {notified} members of room {result.room_id} that {result.user_id} left")

        self.registry.unregister(connection_id)
        logger.info(f"Connection {connection_id} closed ({self.registry.count()} active)")
        return connection

    def sweep(self) -> SweepStats:
        stats = SweepStats()
        for connection in self.registry.reap_closed():
            self.connection_closed(connection.connection_id)
            stats.reaped.append(connection)
        stats.evicted_members = self.rooms.sweep(empty_room_max_age=self.sweep_interval)
        return stats

    async def close_reaped(self, connections: List[Connection]) -> None:
        """Close the sockets of reaped connections so their writer tasks and receive loops end."""
        results = await asyncio.gather(
            *(c.transport.close(code=WS_INTERNAL_ERROR, reason="Connection reaped") for c in connections),
            return_exceptions=True,
        )
        for connection, result in zip(connections, results):
            if isinstance(result, Exception):
                logger.debug(f"Error closing reaped connection {connection.connection_id}: {result}")

    async def run_sweeper(self) -> None:
        logger.info(f"Stale connection sweeper started (every {self.sweep_interval}s)")
        while True:
            try:
                await asyncio.sleep(self.sweep_interval)
                stats = self.sweep()
                if stats.reaped:
                    await self.close_reaped(stats.reaped)
                if stats.total:
                    logger.info(
                        f"Sweep removed {stats.closed_connections} closed connections, "
                        f"evicted {stats.evicted_members} room members"
                    )
            except asyncio.CancelledError:
                logger.info("Stale connection sweeper stopped")
                break
            except Exception as e:
                logger.error(f"Error in stale connection sweep: {e}", exc_info=True)
