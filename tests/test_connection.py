"""Tests for sftpkit.connection - lazy dial, health check, reconnect and teardown."""

import io
import threading
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from sftpkit.config import ClientConfig
from sftpkit.connection import DISCONNECTED, Connected, ConnectionManager, release_async
from sftpkit.errors import HostKeyMismatchError, SFTPConnectionError
from sftpkit.hostkeys import InsecureHostKeyNotice, parse_public_key
from sftpkit.metrics import ClientMetrics
from sftpkit.session import RemoteSession

HOST_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIPZ3WQItO2r2wfGrjedz9LGwlLFgIUM6GbIpBKvaxiSz"
OTHER_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAINnH6Geq7YNlClxNhCMN0IVt1f0XsPyMYqlW5htNYLpy"


def _transport(key=HOST_KEY):
    t = MagicMock(name="transport")
    t.get_remote_server_key.return_value = parse_public_key(key)
    t.is_authenticated.return_value = True
    return t


@pytest.fixture
def dial():
    """Patch the network: socket, Transport, SFTPClient and the retry sleep."""
    with (
        patch("sftpkit.connection.socket.create_connection") as create_connection,
        patch("sftpkit.connection.paramiko.Transport") as transport_cls,
        patch("sftpkit.connection.paramiko.SFTPClient") as sftp_cls,
        patch("sftpkit.connection.time.sleep") as sleep,
    ):
        transport = _transport()
        transport_cls.return_value = transport
        yield SimpleNamespace(
            create_connection=create_connection,
            transport_cls=transport_cls,
            transport=transport,
            sftp_cls=sftp_cls,
            sftp=sftp_cls.return_value,
            sleep=sleep,
        )


@pytest.fixture
def metrics():
    return ClientMetrics()


def _manager(metrics, notice=None, **kwargs):
    cfg_kwargs = {"username": "demo", "password": "pw", "host_public_keys": (HOST_KEY,)}
    cfg_kwargs.update(kwargs)
    cfg = ClientConfig("sftp.example.com:2222", **cfg_kwargs)
    return ConnectionManager(cfg, metrics=metrics, notice=notice or InsecureHostKeyNotice())


# ---------------------------------------------------------------------------
# Connecting
# ---------------------------------------------------------------------------


class TestAcquire:
    def test_lazy(self, dial, metrics):
        conn = _manager(metrics)
        assert conn.state is DISCONNECTED
        assert not conn.connected
        dial.create_connection.assert_not_called()

    def test_connects(self, dial, metrics):
        conn = _manager(metrics)
        session = conn.acquire()

        assert isinstance(session, RemoteSession)
        assert session.sftp is dial.sftp
        assert isinstance(conn.state, Connected)
        dial.create_connection.assert_called_once_with(("sftp.example.com", 2222), timeout=10.0)
        dial.transport.start_client.assert_called_once_with(timeout=10.0)
        dial.transport.auth_password.assert_called_once_with("demo", "pw")
        dial.transport.open_session.assert_called_once_with(max_packet_size=None, timeout=10.0)
        chan = dial.transport.open_session.return_value
        chan.invoke_subsystem.assert_called_once_with("sftp")
        dial.sftp_cls.assert_called_once_with(chan)
        assert metrics.agent_up.get("sftp.example.com:2222") == 1

    def test_packet_size_and_concurrency(self, dial, metrics):
        conn = _manager(metrics, packet_size=32768, max_connections=8)
        session = conn.acquire()
        dial.transport.open_session.assert_called_once_with(max_packet_size=32768, timeout=10.0)
        assert session.max_connections == 8

    def test_healthy_session_reused(self, dial, metrics):
        conn = _manager(metrics)
        first = conn.acquire()
        second = conn.acquire()
        assert first is second
        assert dial.create_connection.call_count == 1
        dial.sftp.normalize.assert_called_once_with(".")

    def test_stale_session_replaced(self, dial, metrics):
        conn = _manager(metrics)
        conn.acquire()
        dial.sftp.normalize.side_effect = OSError("Socket is closed")

        conn.acquire()
        assert dial.create_connection.call_count == 2
        dial.sftp.close.assert_called()
        dial.transport.close.assert_called()


class TestDialRetries:
    def test_retries_then_succeeds(self, dial, metrics):
        dial.create_connection.side_effect = [OSError("refused"), OSError("refused"), MagicMock()]
        conn = _manager(metrics)
        conn.acquire()
        assert dial.create_connection.call_count == 3
        assert dial.sleep.call_count == 2
        dial.sleep.assert_called_with(0.25)
        assert metrics.connection_retries.get("sftp.example.com:2222") == 2

    def test_gives_up_after_three_attempts(self, dial, metrics):
        dial.create_connection.side_effect = OSError("refused")
        conn = _manager(metrics)
        with pytest.raises(SFTPConnectionError, match="refused") as exc_info:
            conn.acquire()
        assert exc_info.value.hostname == "sftp.example.com:2222"
        assert isinstance(exc_info.value.__cause__, OSError)
        assert dial.create_connection.call_count == 3
        assert metrics.connection_retries.get("sftp.example.com:2222") == 2
        assert metrics.agent_up.get("sftp.example.com:2222") == 0
        assert not conn.connected

    def test_auth_failure_closes_transport(self, dial, metrics):
        dial.transport.auth_password.side_effect = paramiko.AuthenticationException("Authentication failed.")
        conn = _manager(metrics)
        with pytest.raises(SFTPConnectionError, match="Authentication failed"):
            conn.acquire()
        assert dial.transport.close.call_count == 3

    def test_socket_closed_if_transport_fails(self, dial, metrics):
        sock = MagicMock()
        dial.create_connection.return_value = sock
        dial.transport_cls.side_effect = paramiko.SSHException("bad banner")
        with pytest.raises(SFTPConnectionError):
            _manager(metrics).acquire()
        assert sock.close.call_count == 3


class TestHostKeys:
    def test_mismatch_rejected_without_retry(self, dial, metrics):
        dial.transport.get_remote_server_key.return_value = parse_public_key(OTHER_KEY)
        conn = _manager(metrics)
        with pytest.raises(HostKeyMismatchError, match="no matching host keys"):
            conn.acquire()
        assert dial.create_connection.call_count == 1
        dial.transport.close.assert_called_once()
        dial.transport.auth_password.assert_not_called()
        assert metrics.agent_up.get("sftp.example.com:2222") == 0

    def test_single_host_public_key(self, dial, metrics):
        conn = _manager(metrics, host_public_keys=(), host_public_key=HOST_KEY)
        conn.acquire()
        assert conn.connected

    def test_bad_configured_key_fails_fast(self, metrics):
        with pytest.raises(ValueError, match="index 0"):
            _manager(metrics, host_public_keys=("ssh-rsa %%%",))

    def test_insecure_default_warns_once(self, dial, metrics, caplog):
        notice = InsecureHostKeyNotice()
        a = _manager(metrics, notice=notice, host_public_keys=())
        b = _manager(metrics, notice=notice, host_public_keys=())
        with caplog.at_level("WARNING"):
            a.acquire()
            b.acquire()
        assert notice.count == 1
        assert sum("Insecure default" in r.getMessage() for r in caplog.records) == 1
        dial.transport.get_remote_server_key.assert_not_called()

    def test_no_warning_with_keys(self, dial, metrics):
        notice = InsecureHostKeyNotice()
        _manager(metrics, notice=notice).acquire()
        assert notice.count == 0


@pytest.fixture(scope="module")
def pem():
    """PEM text of a throwaway RSA client key."""
    buf = io.StringIO()
    paramiko.RSAKey.generate(2048).write_private_key(buf)
    return buf.getvalue()


class TestAuthentication:
    def test_private_key(self, dial, metrics, pem):
        conn = _manager(metrics, password="", client_private_key=pem)
        dial.transport.is_authenticated.side_effect = [False, True]
        conn.acquire()
        dial.transport.auth_password.assert_not_called()
        username, key = dial.transport.auth_publickey.call_args[0]
        assert username == "demo"
        assert isinstance(key, paramiko.RSAKey)

    def test_password_then_key(self, dial, metrics, pem):
        dial.transport.auth_password.side_effect = paramiko.AuthenticationException("nope")
        dial.transport.is_authenticated.side_effect = [False, True]
        conn = _manager(metrics, client_private_key=pem)
        conn.acquire()
        dial.transport.auth_publickey.assert_called_once()

    def test_no_credentials_uses_none_auth(self, dial, metrics):
        conn = _manager(metrics, password="")
        conn.acquire()
        dial.transport.auth_none.assert_called_once_with("demo")

    def test_incomplete_auth(self, dial, metrics):
        dial.transport.is_authenticated.return_value = False
        with pytest.raises(SFTPConnectionError, match="authentication incomplete"):
            _manager(metrics).acquire()

    def test_unreadable_private_key(self, dial, metrics):
        conn = _manager(metrics, client_private_key="-----BEGIN NOTHING-----")
        with pytest.raises(SFTPConnectionError, match="failed to read client private key"):
            conn.acquire()
        dial.create_connection.assert_not_called()


class TestSubsystem:
    def test_subsystem_failure_releases_transport(self, dial, metrics):
        chan = dial.transport.open_session.return_value
        chan.invoke_subsystem.side_effect = paramiko.SSHException("subsystem request failed")
        with patch("sftpkit.connection.release_async") as release:
            with pytest.raises(SFTPConnectionError, match="subsystem request failed"):
                _manager(metrics).acquire()
        release.assert_called_once_with(dial.transport)
        chan.close.assert_called_once()


# ---------------------------------------------------------------------------
# Recovery and teardown
# ---------------------------------------------------------------------------


class TestRecover:
    def test_unclassified_returned_unchanged(self, dial, metrics):
        conn = _manager(metrics)
        conn.acquire()
        err = FileNotFoundError(2, "No such file")
        assert conn.recover(err) is err
        assert dial.create_connection.call_count == 1

    def test_classified_reconnects(self, dial, metrics):
        conn = _manager(metrics)
        conn.acquire()
        first = conn.state
        with patch.object(metrics, "record_down", wraps=metrics.record_down) as down:
            assert conn.recover(EOFError()) is None
        down.assert_called_once_with("sftp.example.com:2222")
        assert dial.create_connection.call_count == 2
        assert conn.state is not first
        assert metrics.agent_up.get("sftp.example.com:2222") == 1

    def test_reconnect_failure_returned(self, dial, metrics):
        conn = _manager(metrics)
        conn.acquire()
        dial.create_connection.side_effect = OSError("refused")
        err = conn.recover(IOError("Connection lost"))
        assert isinstance(err, SFTPConnectionError)
        assert not conn.connected
        assert metrics.agent_up.get("sftp.example.com:2222") == 0


class TestTeardown:
    def test_teardown_drops_both(self, dial, metrics):
        conn = _manager(metrics)
        conn.acquire()
        conn.teardown()
        assert conn.state is DISCONNECTED
        dial.sftp.close.assert_called_once()
        dial.transport.close.assert_called_once()

    def test_close_never_raises(self, dial, metrics):
        conn = _manager(metrics)
        conn.acquire()
        dial.sftp.close.side_effect = OSError("boom")
        dial.transport.close.side_effect = EOFError()
        assert conn.close() is None
        assert not conn.connected

    def test_close_when_disconnected(self, metrics):
        _manager(metrics).close()


class TestReleaseAsync:
    def test_closes_on_daemon_thread(self):
        transport = MagicMock()
        closed_on = []
        transport.close.side_effect = lambda: closed_on.append(threading.current_thread())
        t = release_async(transport)
        t.join(timeout=5)
        assert closed_on == [t]
        assert t.daemon

    def test_errors_discarded(self):
        transport = MagicMock()
        transport.close.side_effect = OSError("already closed")
        t = release_async(transport)
        t.join(timeout=5)
        transport.close.assert_called_once()
