"""WebTransport session over HTTP/3, built on aioquic.

``open_session`` performs the QUIC handshake, optionally pins the server
certificate by its SHA-256 fingerprint, and issues the extended CONNECT that
establishes a WebTransport session. The session hands out bidirectional
streams with an async ``read``/``write``/``close`` interface.
"""

import asyncio
import base64
import binascii
import hmac
import inspect
import ssl
from contextlib import AsyncExitStack
from typing import Dict, Optional, Union
from urllib.parse import urlparse

from aioquic.asyncio import connect as quic_connect
from aioquic.asyncio.protocol import QuicConnectionProtocol
from aioquic.h3.connection import H3_ALPN, H3Connection
from aioquic.h3.events import (
    DataReceived,
    H3Event,
    HeadersReceived,
    WebTransportStreamDataReceived,
)
from aioquic.quic.configuration import QuicConfiguration
from aioquic.quic.events import ConnectionTerminated, QuicEvent, StreamReset
from cryptography.hazmat.primitives import hashes

from wmtp.utils.errors import (
    CapabilityUnavailableError,
    CertificatePinError,
    HandshakeError,
    InvalidCertificateHashError,
    NotConnectedError,
    ReadStreamError,
    ValidationError,
)
from wmtp.utils.logging import get_logger

from .constants import CERT_HASH_LENGTH, DEFAULT_PORT, MAX_DATAGRAM_FRAME_SIZE

logger = get_logger(__name__)


def webtransport_available() -> bool:
    """Check whether the installed aioquic can carry WebTransport sessions."""
    try:
        params = inspect.signature(H3Connection).parameters
    except (TypeError, ValueError):
        return False

    return "enable_webtransport" in params and hasattr(
        H3Connection, "create_webtransport_stream"
    )


def decode_certificate_hash(cert_hash: Union[str, bytes]) -> bytes:
    """Decode a base64 SHA-256 certificate fingerprint.

    Args:
        cert_hash: The base64 text of a 32-byte digest.

    Returns:
        bytes: The raw digest.

    Raises:
        InvalidCertificateHashError: If the text is not base64 or not 32 bytes.
    """
    try:
        digest = base64.b64decode(cert_hash.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidCertificateHashError(
            "Certificate hash is not valid base64", details={"error": str(e)}
        ) from e

    if len(digest) != CERT_HASH_LENGTH:
        raise InvalidCertificateHashError(
            f"Certificate hash must be a {CERT_HASH_LENGTH}-byte SHA-256 digest",
            details={"length": len(digest)},
        )

    return digest


class BidirectionalStream:
    """One WebTransport bidirectional stream.

    ``read`` returns the next chunk of bytes, ``None`` at end of stream, or
    raises the error that terminated the stream.
    """

    def __init__(self, protocol: "WebTransportProtocol", stream_id: int):
        self._protocol = protocol
        self.stream_id = stream_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._write_closed = False

    def feed_data(self, data: bytes) -> None:
        if data:
            self._queue.put_nowait(data)

    def feed_eof(self) -> None:
        self._queue.put_nowait(None)

    def feed_error(self, error: Exception) -> None:
        self._queue.put_nowait(error)

    async def read(self) -> Optional[bytes]:
        item = await self._queue.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def write(self, data: bytes) -> None:
        if self._write_closed:
            raise NotConnectedError("Stream is closed for writing")
        self._protocol.send_stream_data(self.stream_id, data)

    async def close(self) -> None:
        if not self._write_closed:
            self._write_closed = True
            self._protocol.send_stream_data(self.stream_id, b"", end_stream=True)


class WebTransportProtocol(QuicConnectionProtocol):
    """QUIC protocol that runs an HTTP/3 WebTransport client session."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._http = H3Connection(self._quic, enable_webtransport=True)
        self._session_id: Optional[int] = None
        self._established: Optional[asyncio.Future] = None
        self._streams: Dict[int, BidirectionalStream] = {}

    def verify_certificate_hash(self, expected: bytes) -> None:
        """Compare the server certificate's SHA-256 fingerprint to ``expected``.

        Raises:
            CertificatePinError: If the fingerprints differ.
        """
        # aioquic keeps the peer certificate on its TLS context only
        certificate = getattr(self._quic.tls, "_peer_certificate", None)
        if certificate is None:
            raise CertificatePinError("Server did not present a certificate")

        actual = certificate.fingerprint(hashes.SHA256())
        if not hmac.compare_digest(actual, expected):
            raise CertificatePinError(
                details={
                    "expected": base64.b64encode(expected).decode(),
                    "actual": base64.b64encode(actual).decode(),
                }
            )

    async def establish(self, authority: str, path: str) -> int:
        """Send the extended CONNECT and wait for the server to accept it.

        Returns:
            int: The session id (the CONNECT stream id).
        """
        stream_id = self._quic.get_next_available_stream_id()
        self._session_id = stream_id
        self._established = asyncio.get_running_loop().create_future()

        self._http.send_headers(
            stream_id=stream_id,
            headers=[
                (b":method", b"CONNECT"),
                (b":scheme", b"https"),
                (b":authority", authority.encode()),
                (b":path", path.encode()),
                (b":protocol", b"webtransport"),
            ],
        )
        self.transmit()

        await self._established
        logger.debug(f"WebTransport session {stream_id} established")
        return stream_id

    def create_stream(self) -> BidirectionalStream:
        if self._session_id is None:
            raise HandshakeError("WebTransport session is not established")

        stream_id = self._http.create_webtransport_stream(
            self._session_id, is_unidirectional=False
        )
        stream = BidirectionalStream(self, stream_id)
        self._streams[stream_id] = stream
        self.transmit()
        return stream

    def send_stream_data(
        self, stream_id: int, data: bytes, end_stream: bool = False
    ) -> None:
        self._quic.send_stream_data(stream_id, data, end_stream=end_stream)
        self.transmit()

    def quic_event_received(self, event: QuicEvent) -> None:
        if isinstance(event, ConnectionTerminated):
            self._terminate(event)
        elif isinstance(event, StreamReset) and event.stream_id in self._streams:
            self._streams.pop(event.stream_id).feed_error(
                ReadStreamError(
                    "Stream was reset by the server",
                    details={"error_code": event.error_code},
                )
            )

        for http_event in self._http.handle_event(event):
            self._http_event_received(http_event)

    def _http_event_received(self, event: H3Event) -> None:
        if isinstance(event, HeadersReceived) and event.stream_id == self._session_id:
            status = dict(event.headers).get(b":status", b"")
            if self._established and not self._established.done():
                if status == b"200":
                    self._established.set_result(True)
                else:
                    self._established.set_exception(
                        HandshakeError(
                            f"WebTransport CONNECT rejected with status {status.decode()}"
                        )
                    )

        elif isinstance(event, WebTransportStreamDataReceived):
            stream = self._streams.get(event.stream_id)
            if stream is None:
                return
            stream.feed_data(event.data)
            if event.stream_ended:
                self._streams.pop(event.stream_id, None)
                stream.feed_eof()

        elif (
            isinstance(event, DataReceived)
            and event.stream_id == self._session_id
            and event.stream_ended
        ):
            logger.debug("Server closed the WebTransport session")
            self._end_streams()

    def _terminate(self, event: ConnectionTerminated) -> None:
        logger.debug(
            f"QUIC connection terminated (code {event.error_code}): {event.reason_phrase}"
        )
        if self._established and not self._established.done():
            self._established.set_exception(
                HandshakeError(
                    "Connection closed during WebTransport setup",
                    details={"reason": event.reason_phrase},
                )
            )
        self._end_streams()

    def _end_streams(self) -> None:
        streams, self._streams = self._streams, {}
        for stream in streams.values():
            stream.feed_eof()


class WebTransportSession:
    """An established WebTransport session and the connection carrying it."""

    def __init__(self, protocol: WebTransportProtocol, exit_stack: AsyncExitStack):
        self._protocol = protocol
        self._exit_stack = exit_stack

    async def open_stream(self) -> BidirectionalStream:
        return self._protocol.create_stream()

    async def close(self) -> None:
        await self._exit_stack.aclose()


async def open_session(url: str, cert_hash: Optional[bytes] = None) -> WebTransportSession:
    """Connect to a WebTransport endpoint.

    Args:
        url (str): ``https://host[:port]/path`` endpoint.
        cert_hash (Optional[bytes]): SHA-256 fingerprint to trust instead of
            the CA chain.

    Returns:
        WebTransportSession: The established session.
    """
    if not webtransport_available():
        raise CapabilityUnavailableError()

    parsed = urlparse(url)
    if parsed.scheme != "https" or not parsed.hostname:
        raise ValidationError(
            f"WebTransport URL must be https://host[:port]/path, got '{url}'"
        )

    host = parsed.hostname
    port = parsed.port or DEFAULT_PORT
    path = parsed.path or "/"
    if parsed.query:
        path = f"{path}?{parsed.query}"

    configuration = QuicConfiguration(
        is_client=True,
        alpn_protocols=H3_ALPN,
        max_datagram_frame_size=MAX_DATAGRAM_FRAME_SIZE,
        server_name=host,
    )
    if cert_hash is not None:
        # The pinned fingerprint replaces CA chain verification
        configuration.verify_mode = ssl.CERT_NONE

    logger.debug(f"Opening QUIC connection to {host}:{port}")

    exit_stack = AsyncExitStack()
    try:
        protocol = await exit_stack.enter_async_context(
            quic_connect(
                host,
                port,
                configuration=configuration,
                create_protocol=WebTransportProtocol,
            )
        )
        if cert_hash is not None:
            protocol.verify_certificate_hash(cert_hash)
        await protocol.establish(authority=parsed.netloc, path=path)
    except BaseException:
        await exit_stack.aclose()
        raise

    return WebTransportSession(protocol, exit_stack)
