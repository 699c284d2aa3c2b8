"""
Shared pytest fixtures for sftpkit unit tests.
"""

import pytest

from sftpkit.config import ClientConfig

# MockClient fixture for tests that only need the Client surface
from sftpkit.testing import mock_client  # noqa: F401


@pytest.fixture
def sftp_config():
    """Password-authenticated config for a server that is never dialed."""
    return ClientConfig("sftp.example.com", username="demo", password="pw")
