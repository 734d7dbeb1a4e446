"""WMTP protocol session: command dispatch and session state machine."""

import json
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from wmtp.core.events import EventEmitter, ProtocolEvent, TransportEvent
from wmtp.utils.errors import InvalidCommandError, MissingRequiredFieldError
from wmtp.utils.logging import get_logger, log_event

from .constants import Commands, ErrorCodes, Responses, SessionState
from .messages import Message
from .session import Session

if TYPE_CHECKING:
    from wmtp.core.transport import WMTPTransport
    from wmtp.security.session_store import SessionStore

logger = get_logger(__name__)

DEFAULT_STORAGE_KEY = "wmtp_session"


class WMTPProtocol:
    """Turns commands into requests and responses into session state.

    Commands are fire-and-forget: each returns once the request is written,
    and the outcome arrives through ``events`` (see ``ProtocolEvent``).
    """

    def __init__(
        self,
        transport: "WMTPTransport",
        store: Optional["SessionStore"] = None,
        storage_key: str = DEFAULT_STORAGE_KEY,
    ):
        self.transport = transport
        self.events = EventEmitter("protocol")
        self.storage_key = storage_key
        self._store = store
        self._session = Session()

        transport.events.on(TransportEvent.MESSAGE, self.handle_message)

    ## Session accessors

    @property
    def session_token(self) -> Optional[str]:
        return self._session.token

    @property
    def state(self) -> SessionState:
        return self._session.state

    def is_authenticated(self) -> bool:
        return self._session.authenticated

    def get_session(self) -> Session:
        """Return a copy of the current session."""
        return self._session.copy()

    ## Commands

    async def init(self) -> None:
        """Start a new session."""
        await self.send(Message.request(Commands.INIT))

    async def auth(self, email: str) -> None:
        """Authenticate the session with an email address."""
        if not email:
            raise MissingRequiredFieldError("Email is required")
        await self.send(Message.request(Commands.AUTH, {"email": email}))

    async def resume(self, token: str) -> None:
        """Resume a previous session by its token."""
        if not token:
            raise MissingRequiredFieldError("Session token is required")
        await self.send(Message.request(Commands.RESUME, {"token": token}))

    async def logout(self) -> None:
        """End the session.

        The local session is cleared as soon as the request is written,
        without waiting for ``LOGOUT_OK``.
        """
        await self.send(
            Message.request(Commands.LOGOUT, {"token": self._session.token})
        )
        self._session.clear()

    async def ping(self) -> None:
        await self.send(Message.request(Commands.PING))

    async def latency_ping(self) -> None:
        await self.send(Message.request(Commands.LATENCY_PING))

    async def status(self) -> None:
        await self.send(Message.request(Commands.STATUS))

    async def info(self) -> None:
        await self.send(Message.request(Commands.INFO))

    async def send(self, command: Union[Message, Mapping[str, Any], str]) -> None:
        """Send a command.

        Args:
            command: A ``Message``, a dict, or JSON text. It must carry a
                non-empty ``cmd``.

        Raises:
            InvalidCommandError: If the command is malformed.
            NotConnectedError: If the transport is not connected.
        """
        self._validate_command(command)
        await self.transport.send(command)

    @staticmethod
    def _validate_command(command) -> None:
        if isinstance(command, Message):
            cmd = command.cmd
        elif isinstance(command, Mapping):
            cmd = command.get("cmd")
        elif isinstance(command, str):
            try:
                parsed = json.loads(command)
            except json.JSONDecodeError as e:
                raise InvalidCommandError(f"Command is not valid JSON: {e}") from e
            if not isinstance(parsed, dict):
                raise InvalidCommandError("Command must be a JSON object")
            cmd = parsed.get("cmd")
        else:
            raise InvalidCommandError(
                f"Unsupported command type: {type(command).__name__}"
            )

        if not isinstance(cmd, str) or not cmd:
            raise InvalidCommandError("Command must have a non-empty 'cmd' field")

    ## Inbound classification

    def handle_message(self, message: Union[Message, Mapping[str, Any]]) -> None:
        """Classify an inbound message, update the session and fire events."""

        if not isinstance(message, Message):
            try:
                message = Message.model_validate(message)
            except PydanticValidationError as e:
                logger.warning(f"Ignoring invalid message: {e}")
                return

        if message.is_heartbeat:
            self.events.emit(ProtocolEvent.HEARTBEAT, message)
            return

        session = self._session

        if message.cmd == Responses.SESSION_INIT:
            session.token = message.session_token
            session.initialized = True
            session.authenticated = False
            session.email = None
            session.username = None
            self._enforce_invariant()
            logger.info("Session initialized")
            self.events.emit(ProtocolEvent.SESSION_INIT, message)

        elif message.cmd == Responses.AUTH_OK:
            session.token = message.session_token
            session.initialized = True
            session.authenticated = True
            session.email = message.email
            session.username = message.username
            self._enforce_invariant()
            log_event(
                "auth_success",
                "Session authenticated",
                username=message.username,
            )
            self.events.emit(ProtocolEvent.AUTH_SUCCESS, message)

        elif message.cmd == Responses.SESSION_RESUMED:
            session.token = message.session_token
            session.initialized = True
            session.authenticated = bool(message.authenticated)
            session.email = message.email
            session.username = message.username
            self._enforce_invariant()
            logger.info(f"Session resumed (authenticated={session.authenticated})")
            self.events.emit(ProtocolEvent.SESSION_INIT, message)

        elif message.cmd == Responses.LOGOUT_OK:
            session.clear()
            logger.info("Logged out")

        if message.is_error:
            logger.warning(
                f"Server error for {message.cmd}: {message.msg} "
                f"[{ErrorCodes.describe(message.code)}]"
            )
            self.events.emit(ProtocolEvent.ERROR, message)

        self.events.emit(ProtocolEvent.RESPONSE, message)

    def _enforce_invariant(self) -> None:
        if self._session.authenticated and not self._session.token:
            logger.warning("Authenticated response without a session token")
            self._session.authenticated = False

    def clear(self) -> None:
        """Forget the local session without contacting the server."""
        self._session.clear()

    ## Persistence

    @property
    def store(self) -> "SessionStore":
        if self._store is None:
            from wmtp.security.session_store import SessionStore

            self._store = SessionStore()
        return self._store

    async def save_session(self) -> bool:
        """Persist token, email and username if a token is present.

        Returns:
            bool: True if a record was written.
        """
        if not self._session.token:
            return False

        record = {
            "token": self._session.token,
            "email": self._session.email,
            "username": self._session.username,
        }
        await self.store.set(self.storage_key, json.dumps(record))
        logger.debug("Session saved")
        return True

    async def load_session(self) -> Optional[Dict[str, Any]]:
        """Read the saved session record.

        Returns:
            Optional[Dict[str, Any]]: ``{token, email, username}``, or None if
            nothing usable is stored.
        """
        saved = await self.store.get(self.storage_key)
        if not saved:
            return None

        try:
            record = json.loads(saved)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Ignoring malformed saved session")
            return None

        if not isinstance(record, dict) or not isinstance(record.get("token"), str):
            logger.warning("Ignoring malformed saved session")
            return None

        return {
            "token": record["token"],
            "email": record.get("email"),
            "username": record.get("username"),
        }

    async def clear_session(self) -> None:
        """Delete the saved session record."""
        await self.store.delete(self.storage_key)
        logger.debug("Saved session cleared")
