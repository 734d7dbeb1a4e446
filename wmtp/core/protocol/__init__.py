"""WMTP protocol session and wire messages."""

from .constants import Commands, ErrorCodes, Responses, SessionState, Status
from .messages import Message
from .protocol import WMTPProtocol
from .session import Session

__all__ = [
    "Commands",
    "ErrorCodes",
    "Message",
    "Responses",
    "Session",
    "SessionState",
    "Status",
    "WMTPProtocol",
]
