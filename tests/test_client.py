"""
Tests for the WMTP client facade

Tests cover:
- Session start on connect
- Automatic session persistence
- Heartbeat timeout handling
- Reconnect with backoff
- Status reporting
"""
import asyncio
import json

import pytest

from wmtp.core.client import WMTPClient
from wmtp.core.events import ClientEvent
from wmtp.core.reconnect import CircuitBreaker, CircuitState, ReconnectPolicy
from wmtp.utils.errors import HandshakeError, HeartbeatTimeoutError

from .test_helpers import EventRecorder, settle

SAVED_KEY = "wmtp:wmtp_session"
AUTH_OK = '{"status":"OK","cmd":"AUTH_OK","session_token":"T","authenticated":true,"email":"a@b.com","username":"a"}'


@pytest.fixture
def client(app_config, transport, store):
    """Client over the fake transport and in-memory store"""
    return WMTPClient(config=app_config, transport=transport, store=store)


async def deliver(client, stream, raw):
    """Push a chunk from the server and wait for its handlers"""
    stream.push(raw)
    await settle()
    await client.drain()


class TestSessionStart:
    """Tests for what connect sends"""

    @pytest.mark.asyncio
    async def test_connect_sends_init(self, client, session_factory, app_config):
        """Test a fresh client starts a new session on the configured URL"""
        assert await client.connect() is True

        assert session_factory.calls[0][0] == app_config.server.url
        assert session_factory.stream.sent() == [{"cmd": "INIT"}]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_connect_resumes_saved_session(self, client, session_factory, memory_backend):
        """Test a saved session is resumed instead of starting a new one"""
        memory_backend.records[SAVED_KEY] = json.dumps({"token": "saved", "email": "a@b.com", "username": "a"})

        await client.connect("https://mail.example.com:4433")

        assert session_factory.stream.sent() == [{"cmd": "RESUME", "data": {"token": "saved"}}]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_auto_resume_disabled(self, client, session_factory, memory_backend, app_config):
        """Test saved sessions are ignored when auto_resume is off"""
        app_config.session.auto_resume = False
        memory_backend.records[SAVED_KEY] = json.dumps({"token": "saved"})

        await client.connect()

        assert session_factory.stream.sent() == [{"cmd": "INIT"}]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_auto_init_disabled(self, client, session_factory, app_config):
        """Test nothing is sent when there is nothing to resume and auto_init is off"""
        app_config.session.auto_init = False

        await client.connect()

        assert session_factory.stream.sent() == []
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_cert_hash_from_config(self, client, session_factory, app_config):
        """Test the configured certificate hash is pinned"""
        from .test_helpers import CERT_HASH

        app_config.server.cert_hash = CERT_HASH

        await client.connect()

        assert session_factory.calls[0][1] is not None
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_context_manager(self, client):
        """Test the async context manager connects and disconnects"""
        async with client as connected:
            assert connected.connected

        assert not client.connected


class TestSessionPersistence:
    """Tests for automatic save and clear"""

    @pytest.mark.asyncio
    async def test_auth_success_saves_session(self, client, session_factory, memory_backend):
        """Test AUTH_OK persists the session"""
        await client.connect()

        await deliver(client, session_factory.stream, AUTH_OK)

        assert json.loads(memory_backend.records[SAVED_KEY]) == {
            "token": "T",
            "email": "a@b.com",
            "username": "a",
        }
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_authenticated_resume_saves_session(self, client, session_factory, memory_backend):
        """Test an authenticated SESSION_RESUMED persists the session"""
        await client.connect()

        await deliver(
            client,
            session_factory.stream,
            '{"status":"OK","cmd":"SESSION_RESUMED","session_token":"R","authenticated":true,"email":"a@b.com","username":"a"}',
        )

        assert json.loads(memory_backend.records[SAVED_KEY])["token"] == "R"
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_persist_disabled(self, client, session_factory, memory_backend, app_config):
        """Test nothing is saved when persistence is off"""
        app_config.session.persist = False
        await client.connect()

        await deliver(client, session_factory.stream, AUTH_OK)

        assert memory_backend.records == {}
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_logout_clears_saved_session(self, client, session_factory, memory_backend):
        """Test logout sends LOGOUT and forgets the saved record"""
        await client.connect()
        await deliver(client, session_factory.stream, AUTH_OK)

        await client.logout()

        assert session_factory.stream.sent()[-1] == {"cmd": "LOGOUT", "data": {"token": "T"}}
        assert memory_backend.records == {}
        assert client.protocol.get_session().token is None
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_rejected_resume_clears_saved_session(self, client, session_factory, memory_backend):
        """Test an ERR to RESUME drops the stale record and starts over"""
        memory_backend.records[SAVED_KEY] = json.dumps({"token": "stale"})
        await client.connect()

        await deliver(
            client,
            session_factory.stream,
            '{"status":"ERR","cmd":"RESUME","msg":"SESSION_EXPIRED","code":2004}',
        )

        assert memory_backend.records == {}
        assert session_factory.stream.sent() == [
            {"cmd": "RESUME", "data": {"token": "stale"}},
            {"cmd": "INIT"},
        ]
        await client.disconnect()


class TestHeartbeat:
    """Tests for liveness monitoring"""

    @pytest.mark.asyncio
    async def test_silence_drops_connection(self, client, app_config):
        """Test no traffic within the timeout disconnects"""
        app_config.heartbeat.enabled = True
        app_config.heartbeat.timeout = 0.05
        app_config.heartbeat.check_interval = 0.01
        client.heartbeat.timeout = 0.05
        client.heartbeat.check_interval = 0.01
        on_timeout = EventRecorder()
        client.events.on(ClientEvent.HEARTBEAT_TIMEOUT, on_timeout)

        await client.connect()
        await asyncio.sleep(0.2)

        assert on_timeout.count == 1
        assert isinstance(on_timeout.calls[0][0], HeartbeatTimeoutError)
        assert not client.connected
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_heartbeats_keep_connection(self, client, session_factory, app_config):
        """Test heartbeats refresh liveness"""
        app_config.heartbeat.enabled = True
        client.heartbeat.timeout = 0.1
        client.heartbeat.check_interval = 0.01

        await client.connect()
        for ts in range(5):
            session_factory.stream.push(f'{{"status":"OK","cmd":"HB","ts":{ts}}}')
            await asyncio.sleep(0.04)

        assert client.connected
        assert client.heartbeat.heartbeats == 5
        await client.disconnect()
        assert not client.heartbeat.running


class TestReconnect:
    """Tests for automatic reconnection"""

    @pytest.fixture
    def reconnecting_client(self, app_config, transport, store):
        app_config.reconnect.enabled = True
        app_config.reconnect.initial_delay = 0.01
        app_config.reconnect.max_delay = 0.02
        app_config.reconnect.max_attempts = 3
        app_config.reconnect.failure_threshold = 10
        return WMTPClient(config=app_config, transport=transport, store=store)

    @pytest.mark.asyncio
    async def test_reconnects_and_resumes(self, reconnecting_client, session_factory):
        """Test a remote close reconnects and resumes the session"""
        client = reconnecting_client
        on_reconnected = EventRecorder()
        client.events.on(ClientEvent.RECONNECTED, on_reconnected)

        await client.connect()
        await deliver(
            client,
            session_factory.stream,
            '{"status":"OK","cmd":"SESSION_INIT","session_token":"X","authenticated":false}',
        )
        session_factory.stream.end()
        await settle()
        assert await client._reconnect_task is True

        assert client.connected
        assert on_reconnected.calls == [(1,)]
        assert session_factory.stream.sent() == [{"cmd": "RESUME", "data": {"token": "X"}}]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, reconnecting_client, session_factory):
        """Test reconnect stops after the configured attempts"""
        client = reconnecting_client
        on_reconnecting = EventRecorder()
        client.events.on(ClientEvent.RECONNECTING, on_reconnecting)

        await client.connect()
        session_factory.error = OSError("refused")
        session_factory.stream.end()
        await settle()

        assert await client._reconnect_task is False
        assert on_reconnecting.count == 3
        assert len(session_factory.calls) == 4
        assert not client.connected

    @pytest.mark.asyncio
    async def test_explicit_disconnect_does_not_reconnect(self, reconnecting_client):
        """Test disconnect() never schedules a reconnect"""
        client = reconnecting_client
        await client.connect()

        await client.disconnect()

        assert client._reconnect_task is None


class TestCircuitBreaker:
    """Tests for the reconnect circuit breaker"""

    def test_opens_after_threshold(self):
        """Test the breaker opens after consecutive failures"""
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)

        breaker.record_failure()
        assert breaker.can_attempt()
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert not breaker.can_attempt()
        assert breaker.time_until_retry() > 0

    def test_half_open_after_recovery_timeout(self):
        """Test an open breaker allows a test attempt after the timeout"""
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()

        assert breaker.can_attempt()
        assert breaker.state == CircuitState.HALF_OPEN

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

    def test_success_closes(self):
        """Test a success closes the breaker and resets the count"""
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()
        breaker.can_attempt()

        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_backoff_schedule(self):
        """Test delays double up to the maximum"""
        policy = ReconnectPolicy(max_attempts=5, initial_delay=1.0, max_delay=5.0)
        assert list(policy.delays()) == [1.0, 2.0, 4.0, 5.0, 5.0]


class TestStatus:
    """Tests for get_status"""

    @pytest.mark.asyncio
    async def test_status_snapshot(self, client, session_factory):
        """Test the status reflects connection, session and framing"""
        await client.connect()
        await deliver(client, session_factory.stream, AUTH_OK + "{broken}")

        status = client.get_status()

        assert status["connection"] == "connected"
        assert status["session"] == "authenticated"
        assert status["authenticated"] is True
        assert status["username"] == "a"
        assert status["circuit_breaker"] == "closed"
        assert status["framing"]["frames_decoded"] == 1
        assert status["framing"]["frames_dropped"] == 1
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_status_when_disconnected(self, client):
        """Test the status of an idle client"""
        status = client.get_status()

        assert status["connection"] == "disconnected"
        assert status["session"] == "uninitialized"
        assert status["last_message_age"] is None

    @pytest.mark.asyncio
    async def test_connect_failure_propagates(self, client, session_factory):
        """Test connect errors reach the caller"""
        session_factory.error = OSError("refused")

        with pytest.raises(HandshakeError):
            await client.connect()
