"""
Global pytest configuration for HIL harness tests.
"""
import pytest

from pubq_hil.config import HarnessConfig


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep PUBQ_HIL_* variables from the developer's shell out of the tests."""
    import os
    for name in list(os.environ):
        if name.startswith("PUBQ_HIL_"):
            monkeypatch.delenv(name)


@pytest.fixture
def timeout_short() -> float:
    """Short timeout for monitors expected to expire."""
    return 0.05


@pytest.fixture
def timeout_long() -> float:
    """Long timeout for monitors expected to match."""
    return 2.0


@pytest.fixture
def loopback() -> str:
    """Address used for every socket in the tests."""
    return "127.0.0.1"


@pytest.fixture
def harness_config(loopback: str) -> HarnessConfig:
    """Complete configuration with the proxy bound to an ephemeral loopback port."""
    return HarnessConfig(
        serial={"port": "/dev/ttyACM0", "command_timeout": 0.5},
        cloud={"access_token": "test-token", "device_id": "e00fce68test"},
        proxy={
            "upstream_address": loopback,
            "upstream_port": 5684,
            "listen_address": loopback,
            "listen_port": 0,
        },
    )
