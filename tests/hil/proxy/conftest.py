"""
Cloud proxy pytest configuration.

Provides a fake cloud endpoint and fake devices, all on loopback UDP.
"""
import asyncio
import random
from typing import List, Tuple

import pytest
import pytest_asyncio

from pubq_hil.common.cloud_proxy import ImpairmentProxy
from pubq_hil.common.faults import FaultConfig


class UdpPeer(asyncio.DatagramProtocol):
    """UDP endpoint that records what it receives, optionally echoing it back."""

    def __init__(self, echo: bool = False):
        self.echo = echo
        self.transport = None
        self.received: asyncio.Queue = asyncio.Queue()
        self.senders: List[Tuple[str, int]] = []

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.senders.append(addr[:2])
        self.received.put_nowait((data, asyncio.get_running_loop().time()))
        if self.echo:
            self.transport.sendto(data, addr)

    @property
    def address(self) -> Tuple[str, int]:
        return self.transport.get_extra_info("sockname")[:2]

    def send(self, data: bytes, addr=None):
        self.transport.sendto(data, addr)

    async def collect(self, count: int, timeout: float = 2.0) -> List[bytes]:
        """Wait for count datagrams and return their payloads."""
        payloads = []
        for _ in range(count):
            data, _ = await asyncio.wait_for(self.received.get(), timeout)
            payloads.append(data)
        return payloads

    async def silence(self, duration: float = 0.2) -> List[bytes]:
        """Everything received within duration."""
        await asyncio.sleep(duration)
        payloads = []
        while not self.received.empty():
            payloads.append(self.received.get_nowait()[0])
        return payloads


async def open_peer(loopback: str, echo: bool = False, remote=None) -> UdpPeer:
    loop = asyncio.get_running_loop()
    _, peer = await loop.create_datagram_endpoint(
        lambda: UdpPeer(echo),
        local_addr=(loopback, 0),
        remote_addr=remote
    )
    return peer


@pytest.fixture
def faults() -> FaultConfig:
    return FaultConfig()


@pytest_asyncio.fixture
async def cloud(loopback):
    """Fake cloud endpoint."""
    peer = await open_peer(loopback)
    yield peer
    peer.transport.close()


@pytest_asyncio.fixture
async def proxy(faults, cloud, loopback):
    """Impairment proxy relaying to the fake cloud."""
    proxy = ImpairmentProxy(faults, rng=random.Random(1234))
    await proxy.start(cloud.address[0], cloud.address[1],
                      listen_address=loopback, listen_port=0)
    yield proxy
    await proxy.close()


@pytest_asyncio.fixture
async def device_factory(proxy, loopback):
    """Creates fake devices that send to the proxy."""
    devices = []

    async def make() -> UdpPeer:
        device = await open_peer(loopback, remote=proxy.address)
        devices.append(device)
        return device

    yield make
    for device in devices:
        device.transport.close()


@pytest_asyncio.fixture
async def device(device_factory) -> UdpPeer:
    return await device_factory()
