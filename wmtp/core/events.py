"""Multi-subscriber event emitter used by the transport, protocol and client."""

import asyncio
import inspect
from enum import Enum
from typing import Any, Callable, Dict, List, Set

from wmtp.utils.errors import ErrorHandler
from wmtp.utils.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[..., Any]


class TransportEvent(str, Enum):
    """Lifecycle events published by the transport."""

    CONNECT = "connect"
    DISCONNECT = "disconnect"
    ERROR = "error"
    MESSAGE = "message"


class ProtocolEvent(str, Enum):
    """Events published by the protocol session."""

    SESSION_INIT = "session_init"
    AUTH_SUCCESS = "auth_success"
    HEARTBEAT = "heartbeat"
    ERROR = "error"
    RESPONSE = "response"


class ClientEvent(str, Enum):
    """Events published by the client facade."""

    RECONNECTING = "reconnecting"
    RECONNECTED = "reconnected"
    HEARTBEAT_TIMEOUT = "heartbeat_timeout"


class EventEmitter:
    """Publishes named events to any number of listeners.

    Listeners run in subscription order. An exception raised by a listener is
    logged and never reaches the emitter or the remaining listeners. A
    listener returning an awaitable has it scheduled as a task; ``drain()``
    waits for those tasks.
    """

    def __init__(self, name: str = "events"):
        self.name = name
        self._listeners: Dict[Any, List[Listener]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def on(self, event: Any, listener: Listener) -> Callable[[], None]:
        """Subscribe a listener to an event.

        Args:
            event: The event to subscribe to.
            listener: Called with the event payload.

        Returns:
            Callable[[], None]: Removes the subscription when called.
        """
        self._listeners.setdefault(event, []).append(listener)
        return lambda: self.off(event, listener)

    def once(self, event: Any, listener: Listener) -> Callable[[], None]:
        """Subscribe a listener that is removed after its first call."""

        def wrapper(*args, **kwargs):
            self.off(event, wrapper)
            return listener(*args, **kwargs)

        return self.on(event, wrapper)

    def off(self, event: Any, listener: Listener) -> None:
        """Remove a listener. Unknown listeners are ignored."""
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: Any) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: Any, *args: Any) -> None:
        """Call every listener of ``event`` with ``args``."""

        # Copy so listeners may unsubscribe while being called
        for listener in list(self._listeners.get(event, [])):
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    self._track(result, event)
            except Exception as e:
                ErrorHandler.handle(
                    e,
                    context=f"{self.name} listener for '{_event_name(event)}'",
                    log_traceback=False,
                )

    def _track(self, awaitable, event: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                ErrorHandler.handle(
                    t.exception(),
                    context=f"{self.name} async listener for '{_event_name(event)}'",
                    log_traceback=False,
                )

        task.add_done_callback(done)

    async def drain(self) -> None:
        """Wait until all scheduled coroutine listeners have finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def clear(self) -> None:
        """Remove every listener."""
        self._listeners.clear()


def _event_name(event: Any) -> str:
    return event.value if isinstance(event, Enum) else str(event)
