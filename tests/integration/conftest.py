"""Shared fixtures for integration tests."""

import os

import pytest

# Skip all integration tests unless MARKETBRIDGE_NETWORK_TESTS=1
pytestmark = pytest.mark.skipif(
    os.environ.get("MARKETBRIDGE_NETWORK_TESTS") != "1",
    reason="Requires network access. Set MARKETBRIDGE_NETWORK_TESTS=1 to run",
)
