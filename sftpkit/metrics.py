"""
In-process connection metrics, keyed by SFTP host name.

- ``sftp_agent_up`` gauge: 1 after a successful connection attempt or ping,
  0 after a failed one or a connection-breaking error
- ``sftp_connection_retries`` counter: dial attempts beyond the first
"""

from __future__ import annotations

import threading
from typing import Optional

AGENT_UP = "sftp_agent_up"
CONNECTION_RETRIES = "sftp_connection_retries"


class Gauge:
    """Last-value-wins metric with one series per host name."""

    def __init__(self, name: str, help: str = ""):
        self.name = name
        self.help = help
        self._lock = threading.Lock()
        self._values: dict[str, float] = {}

    def set(self, hostname: str, value: float) -> None:
        with self._lock:
            self._values[hostname] = float(value)

    def get(self, hostname: str) -> Optional[float]:
        """Current value, or None if never set for hostname."""
        with self._lock:
            return self._values.get(hostname)

    def snapshot(self) -> dict[str, float]:
        with self._lock:
            return dict(self._values)

    def __repr__(self):
        return f"Gauge({self.name!r}, series={len(self._values)})"


class Counter:
    """Monotonic metric with one series per host name."""

    def __init__(self, name: str, help: str = ""):
        self.name = name
        self.help = help
        self._lock = threading.Lock()
        self._values: dict[str, float] = {}

    def inc(self, hostname: str, amount: float = 1) -> None:
        if amount < 0:
            raise ValueError(f"counter can only increase, got {amount}")
        with self._lock:
            self._values[hostname] = self._values.get(hostname, 0.0) + amount

    def get(self, hostname: str) -> float:
        with self._lock:
            return self._values.get(hostname, 0.0)

    def snapshot(self) -> dict[str, float]:
        with self._lock:
            return dict(self._values)

    def __repr__(self):
        return f"Counter({self.name!r}, series={len(self._values)})"


class ClientMetrics:
    """Metrics recorded by a client's connection manager."""

    def __init__(self):
        self.agent_up = Gauge(AGENT_UP, "Status of SFTP agent")
        self.connection_retries = Counter(CONNECTION_RETRIES, "Count of retried SFTP connections")

    def record_up(self, hostname: str) -> None:
        self.agent_up.set(hostname, 1)

    def record_down(self, hostname: str) -> None:
        self.agent_up.set(hostname, 0)

    def record_retry(self, hostname: str) -> None:
        self.connection_retries.inc(hostname)


# Shared by clients that are not given their own instance
DEFAULT_METRICS = ClientMetrics()


__all__ = ["ClientMetrics", "Counter", "Gauge", "DEFAULT_METRICS", "AGENT_UP", "CONNECTION_RETRIES"]
