"""
UDP impairment proxy between devices and their cloud endpoint.

Devices talk to the proxy as if it were the cloud. Each device peer gets its
own upstream-facing socket so the cloud still sees one session per device.
Datagrams in both directions pass through the shared FaultConfig, which can
drop them or hold them back to simulate a bad network.
"""
import asyncio
import contextlib
import functools
import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

import structlog

from .errors import ConfigurationError
from .faults import Direction, FaultConfig
from .interfaces import select_bind_address

logger = structlog.get_logger()

Address = Tuple[str, int]

DEFAULT_CLOUD_PORT = 5684


@dataclass
class ProxyStats:
    """Datagram counters per direction."""
    relayed_from_device: int = 0
    relayed_to_device: int = 0
    dropped_from_device: int = 0
    dropped_to_device: int = 0

    def count(self, direction: Direction, relayed: bool):
        outcome = "relayed" if relayed else "dropped"
        name = f"{outcome}_{direction.value}"
        setattr(self, name, getattr(self, name) + 1)


class DelayLine:
    """Runs callbacks after a delay, in the order they were submitted."""

    def __init__(self, name: str):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    @property
    def outstanding(self) -> int:
        return self._queue.qsize()

    def start(self):
        if self._task is None:
            self._task = asyncio.ensure_future(self._run())

    def submit(self, delay: float, callback: Callable[[], None]):
        due = asyncio.get_running_loop().time() + delay
        self._queue.put_nowait((due, callback))

    async def close(self):
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self):
        loop = asyncio.get_running_loop()
        while True:
            due, callback = await self._queue.get()
            remaining = due - loop.time()
            if remaining > 0:
                await asyncio.sleep(remaining)
            try:
                callback()
            except Exception:
                logger.exception("delayed_delivery_failed", line=self.name)


class Session:
    """Relay state for one device peer."""

    def __init__(self, address: str, port: int):
        self.address = address
        self.port = port
        self.transport: Optional[asyncio.DatagramTransport] = None
        self.closed = False
        self._backlog: List[Tuple[bytes, Address]] = []

    @property
    def peer(self) -> Address:
        return (self.address, self.port)

    @property
    def local_address(self) -> Optional[Address]:
        if self.transport is None:
            return None
        return self.transport.get_extra_info("sockname")[:2]

    def matches(self, address: str, port: int) -> bool:
        return self.address == address and self.port == port

    def send(self, data: bytes, upstream: Address):
        """Send to the cloud from this device's own socket."""
        if self.closed:
            logger.warning("session_closed_drop", peer=self.peer, size=len(data))
            return
        if self.transport is None:
            # Socket still opening; flushed in order by attach()
            self._backlog.append((data, upstream))
            return
        self.transport.sendto(data, upstream)

    def attach(self, transport: asyncio.DatagramTransport):
        self.transport = transport
        backlog, self._backlog = self._backlog, []
        for data, upstream in backlog:
            self.send(data, upstream)

    def close(self):
        self.closed = True
        self._backlog = []
        if self.transport is not None:
            self.transport.close()


class _DeviceSideProtocol(asyncio.DatagramProtocol):
    """Listening socket that devices send to."""

    def __init__(self, proxy: 'ImpairmentProxy'):
        self.proxy = proxy

    def datagram_received(self, data: bytes, addr):
        self.proxy._from_device(data, addr)

    def error_received(self, exc: Exception):
        self.proxy._listen_error(exc)


class _SessionProtocol(asyncio.DatagramProtocol):
    """Per-device socket that talks to the cloud."""

    def __init__(self, proxy: 'ImpairmentProxy', session: Session):
        self.proxy = proxy
        self.session = session

    def datagram_received(self, data: bytes, addr):
        self.proxy._to_device(self.session, data)

    def error_received(self, exc: Exception):
        self.proxy._session_error(self.session, exc)


class ImpairmentProxy:
    """Bidirectional UDP relay with configurable latency and loss."""

    def __init__(self, faults: Optional[FaultConfig] = None,
                 rng: Optional[random.Random] = None):
        self.faults = faults if faults is not None else FaultConfig()
        self.rng = rng if rng is not None else random.Random()
        self.sessions: List[Session] = []
        self.stats = ProxyStats()
        self.upstream: Optional[Address] = None
        self.address: Optional[Address] = None
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._delay_lines: Dict[Direction, DelayLine] = {}
        self._opening: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    async def start(self, upstream_address: str, upstream_port: int = DEFAULT_CLOUD_PORT,
                    interface: Optional[str] = None, listen_address: Optional[str] = None,
                    listen_port: Optional[int] = None) -> Address:
        """
        Bind the listening socket and begin relaying.

        Args:
            upstream_address: Cloud endpoint address
            upstream_port: Cloud endpoint port
            interface: Interface to listen on; required when several are usable
            listen_address: Explicit local address, bypasses interface detection
            listen_port: Local port, defaults to the upstream port

        Returns:
            The (address, port) the proxy is listening on

        Raises:
            ConfigurationError: missing upstream or no unambiguous interface
        """
        if not upstream_address:
            raise ConfigurationError("proxy upstream address not set")
        if listen_address is None:
            _, listen_address = select_bind_address(interface)
        if listen_port is None:
            listen_port = upstream_port

        loop = asyncio.get_running_loop()
        self.upstream = (upstream_address, upstream_port)
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _DeviceSideProtocol(self),
            local_addr=(listen_address, listen_port)
        )
        self.address = self._transport.get_extra_info("sockname")[:2]

        for direction in Direction:
            line = DelayLine(direction.value)
            line.start()
            self._delay_lines[direction] = line

        logger.info("proxy_listening", address=self.address, upstream=self.upstream)
        return self.address

    async def close(self):
        """Close every socket and stop delayed deliveries."""
        for task in list(self._opening):
            task.cancel()
        for line in self._delay_lines.values():
            await line.close()
        self._delay_lines = {}
        for session in self.sessions:
            session.close()
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        logger.info("proxy_closed", sessions=len(self.sessions))

    # Fault mutators, effective for datagrams processed afterwards

    def set_data_enabled(self, enabled: bool):
        self.faults.set_data_enabled(enabled)

    def set_latency(self, ms: int):
        self.faults.set_latency(ms)

    def set_loss_percent(self, pct: int):
        self.faults.set_loss_percent(pct)

    def set_lose_from_device_count(self, count: int):
        self.faults.set_lose_from_device(count)

    def set_lose_to_device_count(self, count: int):
        self.faults.set_lose_to_device(count)

    def reset_faults(self):
        self.faults.reset()

    def find_session(self, address: str, port: int) -> Optional[Session]:
        for session in self.sessions:
            if session.matches(address, port):
                return session
        return None

    def get_session(self, address: str, port: int) -> Session:
        """Return the peer's session, creating it on first contact."""
        session = self.find_session(address, port)
        if session is not None:
            return session

        session = Session(address, port)
        self.sessions.append(session)
        logger.info("session_created", peer=session.peer)

        task = asyncio.ensure_future(self._open_session(session))
        self._opening.add(task)
        task.add_done_callback(self._opening.discard)
        return session

    async def _open_session(self, session: Session):
        loop = asyncio.get_running_loop()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _SessionProtocol(self, session),
                local_addr=("0.0.0.0", 0)
            )
        except OSError as exc:
            logger.error("session_open_failed", peer=session.peer, error=str(exc))
            session.close()
            return
        session.attach(transport)
        logger.info("session_listening", peer=session.peer, local=session.local_address)

    def _from_device(self, data: bytes, addr):
        address, port = addr[:2]
        session = self.get_session(address, port)
        self._relay(Direction.FROM_DEVICE, data,
                    functools.partial(session.send, data, self.upstream))

    def _to_device(self, session: Session, data: bytes):
        self._relay(Direction.TO_DEVICE, data,
                    functools.partial(self._send_to_device, data, session.peer))

    def _relay(self, direction: Direction, data: bytes, deliver: Callable[[], None]):
        if self.faults.should_drop(direction, self.rng):
            self.stats.count(direction, relayed=False)
            logger.debug("datagram_dropped", arrow=direction.arrow, size=len(data))
            return

        latency = self.faults.latency_ms
        if latency == 0:
            self._deliver(direction, data, deliver)
            return

        logger.debug("datagram_queued", arrow=direction.arrow, size=len(data),
                     latency_ms=latency)
        self._delay_lines[direction].submit(
            latency / 1000.0,
            functools.partial(self._deliver, direction, data, deliver)
        )

    def _deliver(self, direction: Direction, data: bytes, deliver: Callable[[], None]):
        self.stats.count(direction, relayed=True)
        logger.debug("datagram_relayed", arrow=direction.arrow, size=len(data))
        deliver()

    def _send_to_device(self, data: bytes, peer: Address):
        if not self.running:
            logger.warning("proxy_closed_drop", peer=peer, size=len(data))
            return
        self._transport.sendto(data, peer)

    def _listen_error(self, exc: Exception):
        logger.error("proxy_socket_error", address=self.address, error=str(exc))
        if self._transport is not None:
            self._transport.close()

    def _session_error(self, session: Session, exc: Exception):
        logger.error("session_socket_error", peer=session.peer, error=str(exc))
        session.close()
