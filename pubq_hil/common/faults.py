"""
Network fault settings for the cloud proxy.

One FaultConfig is shared by the proxy and the scenarios that tune it.
It starts with no impairment and is reset between scenarios.
"""
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog

logger = structlog.get_logger()


class Direction(Enum):
    """Which way a datagram is travelling through the proxy."""
    FROM_DEVICE = "from_device"
    TO_DEVICE = "to_device"

    @property
    def arrow(self) -> str:
        return ">" if self is Direction.FROM_DEVICE else "<"


@dataclass
class FaultConfig:
    """Mutable impairment settings applied to each relayed datagram."""
    data_enabled: bool = True
    latency_ms: int = 0
    loss_percent: int = 0
    lose_from_device: int = 0
    lose_to_device: int = 0

    def reset(self):
        """Return to no impairment."""
        self.data_enabled = True
        self.latency_ms = 0
        self.loss_percent = 0
        self.lose_from_device = 0
        self.lose_to_device = 0
        logger.info("faults_reset")

    def set_data_enabled(self, enabled: bool):
        self.data_enabled = bool(enabled)
        logger.info("faults_set", data_enabled=self.data_enabled)

    def set_latency(self, ms: int):
        if ms < 0:
            raise ValueError(f"latency must be non-negative, got {ms}")
        self.latency_ms = int(ms)
        logger.info("faults_set", latency_ms=self.latency_ms)

    def set_loss_percent(self, pct: int):
        """Set random loss, clamped to 0..100."""
        self.loss_percent = max(0, min(100, int(pct)))
        logger.info("faults_set", loss_percent=self.loss_percent)

    def set_lose_from_device(self, count: int):
        self.lose_from_device = _counter(count)
        logger.info("faults_set", lose_from_device=self.lose_from_device)

    def set_lose_to_device(self, count: int):
        self.lose_to_device = _counter(count)
        logger.info("faults_set", lose_to_device=self.lose_to_device)

    def should_drop(self, direction: Direction, rng: Optional[random.Random] = None) -> bool:
        """
        Decide whether to drop one datagram.

        Checks run in order and stop at the first that drops: data disabled,
        random loss, then the directional counter (which is decremented only
        when it is the reason for the drop).
        """
        if not self.data_enabled:
            return True
        if self.loss_percent > 0:
            draw = (rng or random).random() * 100
            if draw < self.loss_percent:
                return True
        if direction is Direction.FROM_DEVICE:
            if self.lose_from_device > 0:
                self.lose_from_device -= 1
                return True
        elif self.lose_to_device > 0:
            self.lose_to_device -= 1
            return True
        return False


def _counter(count: int) -> int:
    if count < 0:
        raise ValueError(f"loss counter must be non-negative, got {count}")
    return int(count)
