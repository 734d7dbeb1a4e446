"""WMTP transport: connection lifecycle, framing and the inbound read loop."""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from wmtp.core.events import EventEmitter, TransportEvent
from wmtp.utils.errors import (
    CapabilityUnavailableError,
    HandshakeError,
    NetworkError,
    NetworkTimeoutError,
    NotConnectedError,
    ReadStreamError,
    WMTPError,
)
from wmtp.utils.logging import get_logger, log_event

from .connection import decode_certificate_hash, open_session, webtransport_available
from .constants import (
    CLOSE_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_MAX_FRAME_SIZE,
    TransportState,
)
from .framing import FrameDecoder, OutboundMessage, encode_message

logger = get_logger(__name__)

SessionFactory = Callable[[str, Optional[bytes]], Awaitable[Any]]


class WMTPTransport:
    """Owns one WebTransport session and its single control stream.

    Events (see ``TransportEvent``):
        CONNECT: the stream is open.
        DISCONNECT: the connection went from connected to disconnected.
        ERROR: a connect attempt or the read loop failed; carries the error.
        MESSAGE: a decoded ``Message`` arrived.
    """

    def __init__(
        self,
        session_factory: SessionFactory = open_session,
        capability_check: Callable[[], bool] = webtransport_available,
        connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT,
        max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
        cert_hash: Optional[str] = None,
    ):
        self._session_factory = session_factory
        self._capability_check = capability_check
        self.connect_timeout = connect_timeout
        self.cert_hash = cert_hash
        self.url: Optional[str] = None

        self.state = TransportState.DISCONNECTED
        self.events = EventEmitter("transport")
        self.decoder = FrameDecoder(max_frame_size)

        self._session = None
        self._stream = None
        self._read_task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self.state == TransportState.CONNECTED

    def is_connected(self) -> bool:
        return self.connected

    def set_certificate_hash(self, cert_hash: Optional[str]) -> None:
        """Pin a base64 SHA-256 certificate fingerprint for the next connect."""
        if cert_hash is not None:
            decode_certificate_hash(cert_hash)
        self.cert_hash = cert_hash

    async def connect(self, url: str, cert_hash: Optional[str] = None) -> bool:
        """Connect and open the control stream.

        Args:
            url (str): The WebTransport endpoint.
            cert_hash (Optional[str]): Base64 SHA-256 fingerprint to pin,
                overriding the one set on the transport.

        Returns:
            bool: True once connected.

        Raises:
            CapabilityUnavailableError: WebTransport is not supported here.
            InvalidCertificateHashError: The fingerprint cannot be decoded.
            NetworkTimeoutError: The connection was not ready in time.
            HandshakeError: Any other setup failure.
        """
        if not self._capability_check():
            raise CapabilityUnavailableError(
                "WebTransport is not supported: aioquic with HTTP/3 WebTransport is required"
            )

        if self.state != TransportState.DISCONNECTED:
            logger.warning(f"Connect to {url} ignored: transport is {self.state.value}")
            return True

        pinned = cert_hash if cert_hash is not None else self.cert_hash
        digest = decode_certificate_hash(pinned) if pinned else None

        self.state = TransportState.CONNECTING
        self.url = url
        logger.info(f"Connecting to {url}...")
        if digest is not None:
            logger.info("Using certificate hash for self-signed certificate")

        session = None
        try:
            session = await asyncio.wait_for(
                self._session_factory(url, digest), timeout=self.connect_timeout
            )
            stream = await session.open_stream()
        except BaseException as e:
            self.state = TransportState.DISCONNECTED
            if session is not None:
                await self._close_quietly(session)

            if isinstance(e, asyncio.TimeoutError):
                error: Exception = NetworkTimeoutError(
                    f"Connection to {url} timed out after {self.connect_timeout}s"
                )
            elif isinstance(e, WMTPError):
                error = e
            elif isinstance(e, Exception):
                error = HandshakeError(
                    f"Connection to {url} failed: {e}",
                    details={"url": url, "cause": type(e).__name__},
                )
            else:
                raise

            logger.error(f"Connection failed: {error}")
            self.events.emit(TransportEvent.ERROR, error)
            if error is e:
                raise
            raise error from e

        self._session = session
        self._stream = stream
        self.state = TransportState.CONNECTED
        self._read_task = asyncio.create_task(self._read_loop(stream))

        logger.info(f"Connected to {url}")
        log_event("transport_connected", f"Connected to {url}", url=url)
        self.events.emit(TransportEvent.CONNECT)
        return True

    async def disconnect(self) -> None:
        """Close the connection. Safe to call at any time."""

        session = self._session
        stream = self._stream

        if stream is not None:
            try:
                await stream.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing stream: {e}")

        if session is not None:
            try:
                await asyncio.wait_for(session.close(), timeout=CLOSE_TIMEOUT)
            except Exception as e:
                logger.debug(f"Ignoring error while closing session: {e}")

        self._teardown()

        task = self._read_task
        self._read_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def send(self, message: OutboundMessage) -> None:
        """Write one message to the control stream.

        Args:
            message: A ``Message``, a dict, or pre-serialized JSON text.

        Raises:
            NotConnectedError: If the transport is not connected.
            NetworkError: If the write fails.
        """
        if not self.connected or self._stream is None:
            raise NotConnectedError()

        payload = encode_message(message)

        try:
            await self._stream.write(payload)
        except WMTPError:
            raise
        except Exception as e:
            raise NetworkError(f"Failed to write to stream: {e}") from e

        logger.debug(f"Sent: {payload.decode('utf-8', errors='replace')}")

    async def _read_loop(self, stream) -> None:
        """Read from ``stream`` until it ends, dispatching decoded messages."""

        try:
            while self._stream is stream:
                chunk = await stream.read()
                if chunk is None:
                    logger.info("Stream ended")
                    break

                logger.debug(f"Received {len(chunk)} bytes")
                for message in self.decoder.feed(chunk):
                    self.events.emit(TransportEvent.MESSAGE, message)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._stream is stream:
                error = e if isinstance(e, ReadStreamError) else ReadStreamError(
                    f"Read error: {e}", details={"cause": type(e).__name__}
                )
                logger.error(f"Read error: {e}")
                self.events.emit(TransportEvent.ERROR, error)

        if self._stream is stream:
            session = self._session
            self._teardown()
            await self._close_quietly(session)

    def _teardown(self) -> None:
        """Release the stream and report the disconnect exactly once."""

        was_connected = self.state == TransportState.CONNECTED

        self._stream = None
        self._session = None
        self.state = TransportState.DISCONNECTED
        self.decoder.reset()

        if was_connected:
            logger.info("Disconnected")
            log_event("transport_disconnected", f"Disconnected from {self.url}", url=self.url)
            self.events.emit(TransportEvent.DISCONNECT)

    @staticmethod
    async def _close_quietly(session) -> None:
        if session is None:
            return
        try:
            await asyncio.wait_for(session.close(), timeout=CLOSE_TIMEOUT)
        except Exception as e:
            logger.debug(f"Ignoring error while closing session: {e}")
