"""
Configuration for real/integration tests.

These tests need a reachable SFTP server, configured through environment
variables with the SFTP_TEST_ prefix (see ClientConfig.from_env):

    SFTP_TEST_HOSTNAME=localhost:2222
    SFTP_TEST_USERNAME=demo
    SFTP_TEST_PASSWORD=secret
    SFTP_TEST_HOST_PUBLIC_KEYS="ssh-ed25519 AAAA..."

Run these tests explicitly:
    pytest tests/real/ -v -s
"""

import os
import posixpath
import uuid

import pytest

from sftpkit import ClientConfig, new_client

ENV_PREFIX = "SFTP_TEST_"


def sftp_server_configured() -> bool:
    return bool(os.environ.get(f"{ENV_PREFIX}HOSTNAME"))


requires_sftp = pytest.mark.skipif(
    not sftp_server_configured(),
    reason=f"{ENV_PREFIX}HOSTNAME not set",
)


# =============================================================================
# Pytest Markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "real: marks tests that require a real SFTP server",
    )


def pytest_collection_modifyitems(config, items):
    """Add 'real' marker to all tests in this directory and skip them without a server."""
    for item in items:
        if "tests/real" in str(item.fspath) or "tests\\real" in str(item.fspath):
            item.add_marker(pytest.mark.real)
            item.add_marker(requires_sftp)


# =============================================================================
# Client Fixtures
# =============================================================================


@pytest.fixture(scope="module")
def live_config():
    return ClientConfig.from_env(prefix=ENV_PREFIX)


@pytest.fixture
def live_client(live_config):
    client = new_client(live_config)
    yield client
    client.close()


@pytest.fixture
def scratch_dir(live_client):
    """Unique absolute directory for one test; files created in it are removed afterwards."""
    scratch = posixpath.join(live_client.getwd(), f"sftpkit-test-{uuid.uuid4().hex[:8]}")
    yield scratch
    for path in live_client.list_files(scratch):
        live_client.delete(path)
