"""Protocol command names, response names and server error codes."""

from enum import Enum, IntEnum


class Commands:
    """Request command names understood by the server."""

    # Session
    INIT = "INIT"
    AUTH = "AUTH"
    RESUME = "RESUME"
    LOGOUT = "LOGOUT"
    SESSION_INFO = "SESSION_INFO"
    SESSION_LIST = "SESSION_LIST"
    SESSION_KILL = "SESSION_KILL"
    SESSION_SUSPEND = "SESSION_SUSPEND"
    SESSION_RESUME_SUSPENDED = "SESSION_RESUME_SUSPENDED"
    CONNECTION_LIST = "CONNECTION_LIST"

    # Liveness
    PING = "PING"
    LATENCY_PING = "LATENCY_PING"

    # Server
    STATUS = "STATUS"
    INFO = "INFO"

    # Mailboxes
    MB_LIST = "MB_LIST"
    MB_CREATE = "MB_CREATE"
    MB_INFO = "MB_INFO"
    MB_PURGE_TRASH = "MB_PURGE_TRASH"
    MAIL_LIST = "MAIL_LIST"

    # Messages
    MSG_SEND = "MSG_SEND"
    MSG_SEND_DRAFT = "MSG_SEND_DRAFT"
    MSG_LIST = "MSG_LIST"
    MSG_GET = "MSG_GET"
    MSG_HEADERS = "MSG_HEADERS"
    MSG_MOVE = "MSG_MOVE"
    MSG_COPY = "MSG_COPY"
    MSG_DELETE = "MSG_DELETE"
    MSG_EXPUNGE = "MSG_EXPUNGE"
    MSG_UNDELETE = "MSG_UNDELETE"
    MSG_FLAG_SET = "MSG_FLAG_SET"
    MSG_FLAG_CLEAR = "MSG_FLAG_CLEAR"
    MSG_BULK_ACTION = "MSG_BULK_ACTION"

    # Search
    SEARCH = "SEARCH"
    SEARCH_GLOBAL = "SEARCH_GLOBAL"
    SEARCH_ADV = "SEARCH_ADV"

    # Profile and attachments
    PROFILE_GET = "PROFILE_GET"
    PROFILE_SET = "PROFILE_SET"
    ATTACH_UPLOAD_INIT = "ATTACH_UPLOAD_INIT"
    ATTACH_GET = "ATTACH_GET"


class Responses:
    """Response command names the session state machine reacts to."""

    SESSION_INIT = "SESSION_INIT"
    AUTH_OK = "AUTH_OK"
    SESSION_RESUMED = "SESSION_RESUMED"
    LOGOUT_OK = "LOGOUT_OK"
    HB = "HB"
    PONG = "PONG"
    LATENCY_PONG = "LATENCY_PONG"


class Status:
    """Values of a response's ``status`` field."""

    OK = "OK"
    ERR = "ERR"


class SessionState(str, Enum):
    """States of the client session machine."""

    UNINITIALIZED = "uninitialized"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class ErrorCodes(IntEnum):
    """Numeric ``code`` values carried by ERR responses."""

    # Parse errors
    MALFORMED_JSON = 1001
    UNKNOWN_COMMAND = 1002
    MISSING_FIELD = 1003
    INVALID_FORMAT = 1004

    # Auth errors
    AUTH_FAILED = 2001
    AUTH_REQUIRED = 2002
    SESSION_NOT_FOUND = 2003
    SESSION_EXPIRED = 2004
    INVALID_TOKEN = 2005

    # Mail errors
    MAIL_NOT_FOUND = 3001
    MAILBOX_NOT_FOUND = 3002
    RECIPIENT_NOT_FOUND = 3003
    MAIL_TOO_LARGE = 3004

    # Server errors
    INTERNAL_ERROR = 5000
    SERVICE_UNAVAILABLE = 5001

    @classmethod
    def describe(cls, code) -> str:
        """Return the symbolic name for ``code``, or ``UNKNOWN(<code>)``."""
        try:
            return cls(code).name
        except ValueError:
            return f"UNKNOWN({code})"
