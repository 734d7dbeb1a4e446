"""Transport constants"""

from enum import Enum

DEFAULT_PORT = 443
CERT_HASH_LENGTH = 32  # SHA-256 digest in bytes
MAX_DATAGRAM_FRAME_SIZE = 65536
DEFAULT_MAX_FRAME_SIZE = 1_048_576  # in characters
DEFAULT_CONNECT_TIMEOUT = 10.0  # in seconds
CLOSE_TIMEOUT = 2.0  # in seconds


class TransportState(str, Enum):
    """Connection lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
