"""WMTP client: JSON request/response messaging over WebTransport."""

from wmtp.core.client import WMTPClient
from wmtp.core.events import ClientEvent, EventEmitter, ProtocolEvent, TransportEvent
from wmtp.core.protocol import Message, Session, SessionState, WMTPProtocol
from wmtp.core.transport import FrameDecoder, TransportState, WMTPTransport

__version__ = "0.1.0"

__all__ = [
    "ClientEvent",
    "EventEmitter",
    "FrameDecoder",
    "Message",
    "ProtocolEvent",
    "Session",
    "SessionState",
    "TransportEvent",
    "TransportState",
    "WMTPClient",
    "WMTPProtocol",
    "WMTPTransport",
]
