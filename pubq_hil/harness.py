"""
Harness wiring: one fault config, one cloud proxy and the two monitors,
built from a HarnessConfig.
"""
import random
from typing import Optional

import structlog

from .common.cloud_proxy import ImpairmentProxy
from .common.event_monitor import EventMonitor
from .common.faults import FaultConfig
from .common.serial_monitor import SerialMonitor, SerialWriter
from .config import HarnessConfig

logger = structlog.get_logger()


class Harness:
    """Everything a scenario needs to drive and observe the device."""

    def __init__(self, config: HarnessConfig, serial_writer: Optional[SerialWriter] = None,
                 rng: Optional[random.Random] = None):
        self.config = config
        self.faults = FaultConfig()
        self.proxy = ImpairmentProxy(self.faults, rng=rng)
        self.serial = SerialMonitor(serial_writer, command_timeout=config.serial.command_timeout)
        self.events = EventMonitor()
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self):
        """
        Validate configuration and bring up the cloud proxy.

        Raises:
            ConfigurationError: before any socket is opened, if the
                configuration is incomplete or the listen interface is ambiguous
        """
        self.config.require_complete()

        proxy = self.config.proxy
        if proxy.enabled:
            await self.proxy.start(
                proxy.upstream_address,
                proxy.upstream_port,
                interface=proxy.interface,
                listen_address=proxy.listen_address,
                listen_port=proxy.listen_port
            )
        else:
            logger.info("proxy_disabled")

        self._started = True
        logger.info("harness_ready", device_id=self.config.cloud.device_id,
                    serial_port=self.config.serial.port)

    def reset(self):
        """Restore a clean slate between scenarios."""
        self.faults.reset()
        self.serial.reset()
        self.events.reset()

    async def close(self):
        await self.proxy.close()
        self._started = False
