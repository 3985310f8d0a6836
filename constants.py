import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8080))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

SIGNALING_PATH = os.getenv("SIGNALING_PATH", "/webrtc")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Seconds between stale-connection sweeps
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", 30))
# Hard limit for draining connections on shutdown
SHUTDOWN_GRACE_SECONDS = float(os.getenv("SHUTDOWN_GRACE_SECONDS", 10))
# Outbound frames buffered per connection before the peer is treated as gone
OUTBOUND_QUEUE_SIZE = int(os.getenv("OUTBOUND_QUEUE_SIZE", 256))
# How long a closing transport may spend flushing its buffer
TRANSPORT_FLUSH_SECONDS = float(os.getenv("TRANSPORT_FLUSH_SECONDS", 2))

# WebSocket close codes (RFC 6455)
WS_NORMAL_CLOSURE = 1000
WS_GOING_AWAY = 1001
WS_INTERNAL_ERROR = 1011
