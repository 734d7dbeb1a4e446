"""Wire message model"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

from .constants import Responses, Status


class Message(BaseModel):
    """A single WMTP request or response.

    Messages are immutable. Fields the model does not declare are kept and
    written back out unchanged.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    cmd: Optional[str] = None
    status: Optional[str] = None
    msg: Optional[str] = None
    session_token: Optional[str] = None
    authenticated: Optional[bool] = None
    email: Optional[str] = None
    username: Optional[str] = None
    code: Optional[int] = None
    data: Optional[Any] = None
    ts: Optional[int] = None

    @classmethod
    def request(cls, cmd: str, data: Optional[Dict[str, Any]] = None) -> "Message":
        """Build a request message."""
        if data is None:
            return cls(cmd=cmd)
        return cls(cmd=cmd, data=data)

    @property
    def is_heartbeat(self) -> bool:
        return self.cmd == Responses.HB

    @property
    def is_error(self) -> bool:
        return self.status == Status.ERR

    def to_dict(self) -> Dict[str, Any]:
        """Return the message as a plain dict without unset fields."""
        return self.model_dump(exclude_none=True)

    def to_wire(self) -> str:
        """Serialize the message to compact JSON text."""
        return self.model_dump_json(exclude_none=True)
