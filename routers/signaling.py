from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from constants import SIGNALING_PATH, WS_GOING_AWAY, WS_NORMAL_CLOSURE
from lifecycle import ConnectionLifecycle
from logging_config import get_logger
from relay import SignalingRelay
from shutdown import ShutdownCoordinator
from transport import WebSocketTransport

logger = get_logger(__name__)

signaling_router = APIRouter(tags=["signaling"])


@signaling_router.websocket(SIGNALING_PATH)
async def signaling_endpoint(websocket: WebSocket):
    """Signaling WebSocket. One JSON envelope per frame, see schemas.envelopes."""
    lifecycle: ConnectionLifecycle = websocket.app.state.lifecycle
    relay: SignalingRelay = websocket.app.state.relay
    shutdown: ShutdownCoordinator = websocket.app.state.shutdown

    if shutdown.draining:
        logger.info("WebSocket connection rejected: server is shutting down")
        await websocket.close(code=WS_GOING_AWAY, reason="Server shutting down")
        return

    await websocket.accept()
    transport = WebSocketTransport(websocket)
    connection = lifecycle.connection_opened(transport)
    connection_id = connection.connection_id
    transport.start(name=f"ws-writer-{connection_id[:8]}")

    message_count = 0
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"WebSocket disconnected for connection {connection_id} (code {message.get('code')})")
                break
            data = message.get("text")
            if data is None:
                data = message.get("bytes") or b""
            message_count += 1
            logger.debug(f"Received message #{message_count} from connection {connection_id}")
            relay.handle_message(connection_id, data)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        lifecycle.connection_closed(connection_id)
        await transport.close(code=WS_NORMAL_CLOSURE)
