"""
Lazy, self-healing SSH/SFTP connection.

ConnectionManager owns the single SSH transport and SFTP session of a client.
Nothing is dialed until the first acquire(). Each acquire() health-checks an
existing session (getwd) and reconnects when it is stale. Errors that mean
the connection is broken are routed through recover(), which tears the
connection down and dials again right away.

Example:
    conn = ConnectionManager(ClientConfig("sftp.example.com", username="demo", password="pw"))
    with conn.lock:
        try:
            conn.acquire().remove("outbox/a.txt")
        except IOError as e:
            raise conn.recover(e) or e
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Optional, Union

import paramiko

from sftpkit.config import ClientConfig
from sftpkit.errors import SFTPConnectionError, SFTPError, connection_error_kind
from sftpkit.hostkeys import INSECURE_HOST_KEY_NOTICE, HostKeyMatcher, InsecureHostKeyNotice, read_signer
from sftpkit.metrics import DEFAULT_METRICS, ClientMetrics
from sftpkit.session import RemoteSession

logger = logging.getLogger(__name__)

DIAL_ATTEMPTS = 3
DIAL_RETRY_DELAY = 0.25  # seconds between dial attempts

# Errors worth another dial attempt
_DIAL_ERRORS = (OSError, EOFError, paramiko.SSHException)


# ---------------------------------------------------------------------------
# Connection state
# ---------------------------------------------------------------------------


class Disconnected:
    """No transport or session."""

    def __repr__(self):
        return "Disconnected()"


@dataclass(frozen=True)
class Connected:
    """Live transport and the SFTP session running over it. Dropped together."""

    transport: paramiko.Transport
    session: RemoteSession


DISCONNECTED = Disconnected()

ConnectionState = Union[Disconnected, Connected]


def release_async(transport: paramiko.Transport) -> threading.Thread:
    """Close transport on a daemon thread. The outcome is discarded."""

    def _close():
        try:
            transport.close()
        except Exception as e:
            logger.debug("Ignoring error closing SSH transport: %s", e)

    t = threading.Thread(target=_close, name="sftpkit-release", daemon=True)
    t.start()
    return t


# ---------------------------------------------------------------------------
# ConnectionManager
# ---------------------------------------------------------------------------


class ConnectionManager:
    """Connection lifecycle for one SFTP client.

    Callers hold ``lock`` around acquire()/recover() and the session calls
    between them.

    Args:
        cfg: Client configuration
        logger: Logger for connection events (default: this module's logger)
        metrics: Where to record the up gauge and retry counter (default: DEFAULT_METRICS)
        notice: Guard for the one-time insecure host key warning

    Raises:
        ValueError: If a configured host key can't be parsed
    """

    def __init__(
        self,
        cfg: ClientConfig,
        logger: Optional[logging.Logger] = None,
        metrics: Optional[ClientMetrics] = None,
        notice: Optional[InsecureHostKeyNotice] = None,
    ):
        self._cfg = cfg
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._metrics = metrics or DEFAULT_METRICS
        self._notice = notice or INSECURE_HOST_KEY_NOTICE
        host_keys = cfg.host_keys()
        self._matcher = HostKeyMatcher.from_strings(host_keys) if host_keys else None
        self._signer: Optional[paramiko.PKey] = None
        self._state: ConnectionState = DISCONNECTED
        self.lock = threading.RLock()

    @property
    def hostname(self) -> str:
        return self._cfg.hostname

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return isinstance(self._state, Connected)

    @property
    def metrics(self) -> ClientMetrics:
        return self._metrics

    def record(self, exc: Optional[BaseException]) -> None:
        """Record the host as up (exc is None) or down."""
        if exc is None:
            self._metrics.record_up(self._cfg.hostname)
        else:
            self._metrics.record_down(self._cfg.hostname)

    # -- lifecycle -----------------------------------------------------------

    def acquire(self) -> RemoteSession:
        """Return a working session, connecting or reconnecting as needed.

        Raises:
            SFTPConnectionError: If a new connection can't be established
        """
        state = self._state
        if isinstance(state, Connected):
            try:
                state.session.getwd()
                return state.session
            except Exception as e:
                self._logger.info("sftp: connection to %s is stale, reconnecting: %s", self._cfg.hostname, e)
                self.teardown()

        try:
            session = self._connect()
        except SFTPError as e:
            self.record(e)
            raise
        self.record(None)
        return session

    def recover(self, exc: BaseException) -> Optional[BaseException]:
        """Route an operation error through the connection classifier.

        Connection-breaking errors tear the connection down and reconnect
        once; the result is the reconnect error, or None if reconnecting
        worked. Any other error is returned unchanged.
        """
        kind = connection_error_kind(exc)
        if kind is None:
            return exc
        self._logger.warning("sftp: %s error from %s, reconnecting: %s", kind, self._cfg.hostname, exc)
        self.record(exc)
        self.teardown()
        try:
            self.acquire()
        except SFTPError as e:
            return e
        return None

    def teardown(self) -> None:
        """Drop the session and transport (best-effort)."""
        state = self._state
        self._state = DISCONNECTED
        if not isinstance(state, Connected):
            return
        self._logger.debug("sftp: tearing down connection to %s", self._cfg.hostname)
        try:
            state.session.close()
        except Exception as e:
            self._logger.debug("Ignoring error closing SFTP session: %s", e)
        try:
            state.transport.close()
        except Exception as e:
            self._logger.debug("Ignoring error closing SSH transport: %s", e)

    def close(self) -> None:
        """Release the connection. Never raises."""
        with self.lock:
            was_connected = self.connected
            self.teardown()
        if was_connected:
            self._logger.info("sftp: closed connection to %s", self._cfg.hostname)

    # -- connecting ----------------------------------------------------------

    def _connect(self) -> RemoteSession:
        if self._matcher is None:
            self._notice.emit(self._logger)
        signer = self._load_signer()
        transport = self._dial(signer)
        try:
            session = self._open_session(transport)
        except Exception as e:
            release_async(transport)
            raise SFTPConnectionError(f"sftp: sftp connect: {e}", hostname=self._cfg.hostname) from e

        self._state = Connected(transport=transport, session=session)
        self._logger.info("sftp: connected to %s", self._cfg.hostname)
        return session

    def _load_signer(self) -> Optional[paramiko.PKey]:
        if not self._cfg.client_private_key:
            return None
        if self._signer is None:
            try:
                self._signer = read_signer(self._cfg.client_private_key, self._cfg.client_private_key_password)
            except (paramiko.SSHException, ValueError) as e:
                raise SFTPConnectionError(
                    f"sftp: failed to read client private key: {e}", hostname=self._cfg.hostname
                ) from e
        return self._signer

    def _dial(self, signer: Optional[paramiko.PKey]) -> paramiko.Transport:
        hostname = self._cfg.hostname
        last_exc: Optional[BaseException] = None
        for attempt in range(DIAL_ATTEMPTS):
            if attempt > 0:
                self._metrics.record_retry(hostname)
                self._logger.warning(
                    "sftp: retrying connection to %s (attempt %d/%d): %s", hostname, attempt + 1, DIAL_ATTEMPTS, last_exc
                )
                time.sleep(DIAL_RETRY_DELAY)
            try:
                return self._dial_once(signer)
            except _DIAL_ERRORS as e:
                last_exc = e
        raise SFTPConnectionError(f"sftp: connect to {hostname}: {last_exc}", hostname=hostname) from last_exc

    def _dial_once(self, signer: Optional[paramiko.PKey]) -> paramiko.Transport:
        sock = socket.create_connection(self._cfg.address, timeout=self._cfg.timeout)
        try:
            transport = paramiko.Transport(sock)
        except Exception:
            sock.close()
            raise
        try:
            transport.start_client(timeout=self._cfg.timeout)
            if self._matcher is not None:
                self._matcher.check(self._cfg.hostname, transport.get_remote_server_key())
            self._authenticate(transport, signer)
        except Exception:
            transport.close()
            raise
        return transport

    def _authenticate(self, transport: paramiko.Transport, signer: Optional[paramiko.PKey]) -> None:
        """Password first, then the client key; "none" auth when neither is configured."""
        username = self._cfg.username
        if self._cfg.password:
            try:
                transport.auth_password(username, self._cfg.password)
            except paramiko.AuthenticationException as e:
                if signer is None:
                    raise
                self._logger.debug("sftp: password auth failed for %s, trying key: %s", username, e)
        if signer is not None and not transport.is_authenticated():
            transport.auth_publickey(username, signer)
        if not self._cfg.password and signer is None:
            transport.auth_none(username)
        if not transport.is_authenticated():
            raise paramiko.AuthenticationException(f"authentication incomplete for {username!r}")

    def _open_session(self, transport: paramiko.Transport) -> RemoteSession:
        chan = transport.open_session(max_packet_size=self._cfg.packet_size or None, timeout=self._cfg.timeout)
        try:
            chan.invoke_subsystem("sftp")
            sftp = paramiko.SFTPClient(chan)
        except Exception:
            chan.close()
            raise
        return RemoteSession(sftp, max_connections=self._cfg.max_connections)

    def __repr__(self):
        return f"ConnectionManager({self._cfg.hostname!r}, state={self._state!r})"


__all__ = [
    "ConnectionManager",
    "Connected",
    "Disconnected",
    "DISCONNECTED",
    "release_async",
    "DIAL_ATTEMPTS",
    "DIAL_RETRY_DELAY",
]
