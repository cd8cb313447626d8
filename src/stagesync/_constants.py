"""Internal constants shared across the library."""

DEFAULT_PORT = 4001
DEFAULT_BIND_HOST = "0.0.0.0"

#: Fixed delay between a lost connection and the next attempt (seconds).
RECONNECT_DELAY_SECONDS: float = 2.0

#: Packets a peer may have waiting before the relay gives up on it.
PEER_QUEUE_SIZE = 64

#: Longest a single send to one peer may take (seconds).
PEER_SEND_TIMEOUT_SECONDS: float = 5.0

# ------------------------------------------------------------------
# Wire protocol
# ------------------------------------------------------------------

MSG_UPDATE = "stage:update"
MSG_REQUEST_STATE = "stage:request-state"
MSG_STATE = "stage:state"

#: Origin tag used on packets the relay pushes on its own initiative.
SERVER_ORIGIN = "server"

# ------------------------------------------------------------------
# Agent status text
# ------------------------------------------------------------------

UNAVAILABLE_ERROR = "Sync server unavailable on this build."
TRANSPORT_ERROR = "Cannot reach local sync server."
