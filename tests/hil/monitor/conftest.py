"""
Monitor-specific pytest configuration.
"""
from typing import Any, Dict, List, Optional

import pytest

from pubq_hil.common.event_monitor import EventMonitor
from pubq_hil.common.serial_monitor import SerialMonitor


class FakeSerialPort:
    """Records what the harness writes to the device."""

    def __init__(self):
        self.written: List[bytes] = []

    async def write(self, data: bytes):
        self.written.append(data)


def make_event(name: str = "testEvent", data: Optional[str] = None) -> Dict[str, Any]:
    """An event shaped like the cloud event stream delivers it."""
    return {
        "name": name,
        "data": data,
        "ttl": 60,
        "published_at": "2021-04-20T15:05:37.885Z",
        "coreid": "e00fce68test",
    }


@pytest.fixture
def serial_port() -> FakeSerialPort:
    return FakeSerialPort()


@pytest.fixture
def serial_monitor(serial_port: FakeSerialPort, timeout_long: float) -> SerialMonitor:
    return SerialMonitor(serial_port.write, command_timeout=timeout_long)


@pytest.fixture
def event_monitor() -> EventMonitor:
    return EventMonitor()
