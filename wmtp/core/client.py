"""High-level WMTP client.

Composes the transport, the protocol session and a session store from
configuration, and adds the behaviour an application usually wants on top:

- Session start on connect: resume the current or saved session, else INIT
- Automatic persistence of authenticated sessions
- Heartbeat monitoring: drop the connection when the server goes quiet
- Optional reconnect with exponential backoff behind a circuit breaker

Usage Examples
--------------

Connect, authenticate and log out:
    >>> async with WMTPClient() as client:
    ...     await client.auth("user@example.com")
    ...     await client.logout()

React to events:
    >>> client.protocol.events.on(ProtocolEvent.AUTH_SUCCESS, print)
    >>> client.events.on(ClientEvent.RECONNECTED, lambda attempt: ...)
"""

import asyncio
from typing import Any, Dict, Optional

from wmtp.core.events import (
    ClientEvent,
    EventEmitter,
    ProtocolEvent,
    TransportEvent,
)
from wmtp.core.heartbeat import HeartbeatMonitor
from wmtp.core.protocol import Commands, Message, Responses, WMTPProtocol
from wmtp.core.reconnect import CircuitBreaker, ReconnectPolicy
from wmtp.core.transport import WMTPTransport
from wmtp.security.session_store import SessionStore
from wmtp.utils.config import AppConfig, get_config_manager
from wmtp.utils.errors import (
    HeartbeatTimeoutError,
    WMTPError,
    format_error_message,
)
from wmtp.utils.logging import async_log_call, get_logger, init_logging, log_event

logger = get_logger(__name__)


class WMTPClient:
    """WMTP client facade."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        transport: Optional[WMTPTransport] = None,
        store: Optional[SessionStore] = None,
    ):
        self.config = config or get_config_manager().config

        init_logging(
            log_level=self.config.logging.log_level,
            max_file_size=self.config.logging.max_file_size,
            backup_count=self.config.logging.backup_count,
        ).set_level(self.config.logging.log_level)

        server = self.config.server
        self.transport = transport or WMTPTransport(
            connect_timeout=server.connect_timeout,
            max_frame_size=server.max_frame_size,
        )
        if store is None and self.config.session.persist:
            store = SessionStore(backend=self.config.session.store_backend)

        self.protocol = WMTPProtocol(
            self.transport, store=store, storage_key=self.config.session.storage_key
        )
        self.events = EventEmitter("client")

        self.heartbeat = HeartbeatMonitor(
            timeout=self.config.heartbeat.timeout,
            check_interval=self.config.heartbeat.check_interval,
        )
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=self.config.reconnect.failure_threshold,
            recovery_timeout=self.config.reconnect.recovery_timeout,
        )
        self.reconnect_policy = ReconnectPolicy(
            max_attempts=self.config.reconnect.max_attempts,
            initial_delay=self.config.reconnect.initial_delay,
            max_delay=self.config.reconnect.max_delay,
        )

        self.url: Optional[str] = None
        self.cert_hash: Optional[str] = None
        self._closing = False
        self._reconnect_task: Optional[asyncio.Task] = None

        self.transport.events.on(TransportEvent.CONNECT, self._on_connect)
        self.transport.events.on(TransportEvent.DISCONNECT, self._on_disconnect)
        self.transport.events.on(TransportEvent.MESSAGE, self._on_message)
        self.protocol.events.on(ProtocolEvent.AUTH_SUCCESS, self._on_authenticated)
        self.protocol.events.on(ProtocolEvent.SESSION_INIT, self._on_session_init)
        self.protocol.events.on(ProtocolEvent.ERROR, self._on_error_response)

    async def __aenter__(self) -> "WMTPClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    @property
    def connected(self) -> bool:
        return self.transport.connected

    ## Connection

    @async_log_call
    async def connect(
        self, url: Optional[str] = None, cert_hash: Optional[str] = None
    ) -> bool:
        """Connect and start the session.

        Args:
            url (Optional[str]): Endpoint; defaults to ``server.url``.
            cert_hash (Optional[str]): Pinned fingerprint; defaults to
                ``server.cert_hash``.

        Returns:
            bool: True once connected.
        """
        if self.transport.connected:
            logger.warning("Already connected")
            return True

        self.url = url or self.config.server.url
        self.cert_hash = cert_hash if cert_hash is not None else self.config.server.cert_hash
        self._closing = False

        await self.transport.connect(self.url, self.cert_hash)
        self.circuit_breaker.record_success()
        await self.start_session()
        return True

    @async_log_call
    async def disconnect(self) -> None:
        """Disconnect without triggering a reconnect."""

        self._closing = True
        self._cancel_reconnect()
        self.heartbeat.stop()
        await self.transport.disconnect()
        await self.drain()

    async def start_session(self) -> None:
        """Resume the current or saved session, or start a new one."""

        token = self.protocol.session_token
        if token:
            logger.info("Resuming current session")
            await self.protocol.resume(token)
            return

        session_config = self.config.session
        if session_config.persist and session_config.auto_resume:
            saved = await self.protocol.load_session()
            if saved:
                logger.info("Found saved session, resuming")
                await self.protocol.resume(saved["token"])
                return

        if session_config.auto_init:
            await self.protocol.init()

    async def drain(self) -> None:
        """Wait for pending asynchronous event handlers."""
        await self.transport.events.drain()
        await self.protocol.events.drain()
        await self.events.drain()

    ## Commands

    async def init(self) -> None:
        await self.protocol.init()

    async def auth(self, email: str) -> None:
        await self.protocol.auth(email)

    async def ping(self) -> None:
        await self.protocol.ping()

    async def status(self) -> None:
        await self.protocol.status()

    async def info(self) -> None:
        await self.protocol.info()

    async def send(self, command) -> None:
        await self.protocol.send(command)

    async def logout(self) -> None:
        """Log out and forget the saved session."""
        await self.protocol.logout()
        if self.config.session.persist:
            await self.protocol.clear_session()
        log_event("logout", "Logged out")

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of connection, session and health state."""

        session = self.protocol.get_session()
        age = self.heartbeat.age()

        return {
            "url": self.url,
            "connection": self.transport.state.value,
            "session": session.state.value,
            "authenticated": session.authenticated,
            "username": session.username,
            "circuit_breaker": self.circuit_breaker.state.value,
            "framing": self.transport.decoder.stats.to_dict(),
            "last_message_age": round(age, 3) if age is not None else None,
            "heartbeats": self.heartbeat.heartbeats,
        }

    ## Event handlers

    def _on_connect(self) -> None:
        if self.config.heartbeat.enabled:
            self.heartbeat.start(self._on_heartbeat_timeout)

    def _on_message(self, message: Message) -> None:
        self.heartbeat.tick(heartbeat=message.is_heartbeat)

    async def _on_heartbeat_timeout(self, age: float) -> None:
        error = HeartbeatTimeoutError(
            f"No message from server for {age:.1f}s",
            details={"timeout": self.heartbeat.timeout},
        )
        log_event("heartbeat_timeout", error.message, age=age)
        self.events.emit(ClientEvent.HEARTBEAT_TIMEOUT, error)
        await self.transport.disconnect()

    def _on_disconnect(self) -> None:
        self.heartbeat.stop()

        if self._closing or not self.config.reconnect.enabled:
            return

        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _on_authenticated(self, message: Message) -> None:
        await self._persist()

    async def _on_session_init(self, message: Message) -> None:
        if message.cmd == Responses.SESSION_RESUMED and self.protocol.is_authenticated():
            await self._persist()

    async def _on_error_response(self, message: Message) -> None:
        if message.cmd != Commands.RESUME:
            return

        logger.info("Saved session was rejected, discarding it")
        self.protocol.clear()
        if self.config.session.persist:
            await self.protocol.clear_session()
        if self.config.session.auto_init and self.transport.connected:
            await self.protocol.init()

    async def _persist(self) -> None:
        if not self.config.session.persist:
            return
        try:
            await self.protocol.save_session()
        except WMTPError as e:
            logger.error(f"Could not save session: {format_error_message(e)}")

    ## Reconnect

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _reconnect(self) -> bool:
        """Reconnect with backoff until success, exhaustion or disconnect()."""

        for attempt, delay in enumerate(self.reconnect_policy.delays(), start=1):
            delay = max(delay, self.circuit_breaker.time_until_retry())
            logger.info(f"Reconnecting in {delay:.1f}s (attempt {attempt})")
            self.events.emit(ClientEvent.RECONNECTING, attempt, delay)

            await asyncio.sleep(delay)
            if self._closing:
                return False

            if not self.circuit_breaker.can_attempt():
                logger.debug("Circuit breaker open, skipping reconnect attempt")
                continue

            try:
                await self.transport.connect(self.url, self.cert_hash)
            except WMTPError as e:
                self.circuit_breaker.record_failure()
                logger.warning(
                    f"Reconnect attempt {attempt} failed: {format_error_message(e)}"
                )
                continue

            self.circuit_breaker.record_success()
            log_event("reconnected", f"Reconnected to {self.url}", attempt=attempt)
            self.events.emit(ClientEvent.RECONNECTED, attempt)
            try:
                await self.start_session()
            except WMTPError as e:
                logger.error(f"Could not restart session: {format_error_message(e)}")
            return True

        logger.error(
            f"Giving up after {self.reconnect_policy.max_attempts} reconnect attempts"
        )
        return False
