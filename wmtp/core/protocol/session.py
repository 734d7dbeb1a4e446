"""Client-side session state"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from .constants import SessionState


@dataclass
class Session:
    """Authentication state as perceived by the client.

    ``initialized`` records that the server has answered with a session
    (``SESSION_INIT``, ``AUTH_OK`` or ``SESSION_RESUMED``), even one that
    carried no token.
    """

    token: Optional[str] = None
    authenticated: bool = False
    email: Optional[str] = None
    username: Optional[str] = None
    initialized: bool = field(default=False, repr=False)

    @property
    def state(self) -> SessionState:
        if self.authenticated:
            return SessionState.AUTHENTICATED
        if self.initialized or self.token:
            return SessionState.UNAUTHENTICATED
        return SessionState.UNINITIALIZED

    def clear(self) -> None:
        self.token = None
        self.authenticated = False
        self.email = None
        self.username = None
        self.initialized = False

    def copy(self) -> "Session":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "authenticated": self.authenticated,
            "email": self.email,
            "username": self.username,
        }
