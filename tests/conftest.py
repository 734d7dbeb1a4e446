"""
Shared test fixtures and configuration for pytest
"""
import os
import tempfile

# Keep config, logs and secrets out of the real home directory
os.environ["WMTP_HOME"] = tempfile.mkdtemp(prefix="wmtp-test-")
for _var in ("WMTP_SERVER_URL", "WMTP_CERT_HASH", "WMTP_LOG_LEVEL"):
    os.environ.pop(_var, None)

import pytest

from wmtp.core.protocol import WMTPProtocol
from wmtp.core.transport import WMTPTransport
from wmtp.security.session_store import SessionStore
from wmtp.utils.config import AppConfig

from .test_helpers import FakeSessionFactory, InMemoryBackend

TEST_URL = "https://localhost:4433"


@pytest.fixture
def session_factory():
    """Fake WebTransport session factory"""
    return FakeSessionFactory()


@pytest.fixture
def transport(session_factory):
    """Transport wired to the fake session factory"""
    return WMTPTransport(
        session_factory=session_factory,
        capability_check=lambda: True,
        connect_timeout=1.0,
    )


@pytest.fixture
async def connected_transport(transport):
    """Transport that is already connected"""
    await transport.connect(TEST_URL)
    yield transport
    await transport.disconnect()


@pytest.fixture
def memory_backend():
    """In-memory session storage backend"""
    return InMemoryBackend()


@pytest.fixture
def store(memory_backend):
    """Session store using the in-memory backend"""
    return SessionStore(backends=[memory_backend])


@pytest.fixture
def protocol(transport, store):
    """Protocol session over the fake transport"""
    return WMTPProtocol(transport, store=store)


@pytest.fixture
def app_config():
    """Default configuration with background monitoring switched off"""
    config = AppConfig()
    config.heartbeat.enabled = False
    config.reconnect.enabled = False
    return config
