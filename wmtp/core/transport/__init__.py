"""WebTransport connection, framing and lifecycle for the WMTP client."""

from .connection import (
    BidirectionalStream,
    WebTransportSession,
    decode_certificate_hash,
    open_session,
    webtransport_available,
)
from .constants import TransportState
from .framing import FrameDecoder, FramingStats, encode_message
from .transport import WMTPTransport

__all__ = [
    "BidirectionalStream",
    "FrameDecoder",
    "FramingStats",
    "TransportState",
    "WMTPTransport",
    "WebTransportSession",
    "decode_certificate_hash",
    "encode_message",
    "open_session",
    "webtransport_available",
]
