"""
Record types observed by the harness.

Serial log lines and cloud events arrive from opaque transports; this module
turns them into immutable records carrying an arrival sequence number.
"""
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional


# <digits> [<category>] <LEVEL>: <message>
LOG_LINE_PATTERN = re.compile(r"([0-9]+) \[([^\]]+)\] ([A-Z]+): (.*)")


@dataclass(frozen=True)
class LogRecord:
    """A single trimmed line from the device's serial console."""
    sequence: int
    line: str
    timestamp: Optional[int] = None
    category: Optional[str] = None
    level: Optional[str] = None
    message: Optional[str] = None

    @property
    def parsed(self) -> bool:
        """True if the line followed the device log layout."""
        return self.message is not None

    @classmethod
    def parse(cls, line: str, sequence: int) -> 'LogRecord':
        """
        Parse a raw serial line.

        Lines that don't follow the log layout are kept with only the raw
        text populated.
        """
        m = LOG_LINE_PATTERN.search(line)
        if not m:
            return cls(sequence=sequence, line=line)
        return cls(
            sequence=sequence,
            line=line,
            timestamp=int(m.group(1)),
            category=m.group(2),
            level=m.group(3),
            message=m.group(4)
        )


@dataclass(frozen=True)
class EventRecord:
    """A cloud event published by the device."""
    sequence: int
    name: str
    data: Optional[str] = None
    published_at: Optional[str] = None
    source_id: Optional[str] = None

    @classmethod
    def from_event(cls, event: Mapping[str, Any], sequence: int) -> 'EventRecord':
        """Build a record from an event-stream mapping (name, data, published_at, coreid)."""
        return cls(
            sequence=sequence,
            name=event["name"],
            data=event.get("data"),
            published_at=event.get("published_at"),
            source_id=event.get("coreid", event.get("source_id"))
        )


class LineBuffer:
    """Splits a serial byte stream into complete lines."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self._partial = b""

    @property
    def pending(self) -> bytes:
        """Bytes received after the last newline."""
        return self._partial

    def feed(self, data: bytes) -> List[str]:
        """
        Add received bytes and return the complete lines they finish.

        Args:
            data: Raw bytes as delivered by the serial driver

        Returns:
            Trimmed, non-empty lines in arrival order. Text after the last
            newline is held back until a later newline completes it.
        """
        self._partial += data
        head, sep, tail = self._partial.rpartition(b"\n")
        if not sep:
            return []
        self._partial = tail

        lines = []
        for raw in head.split(b"\n"):
            line = raw.decode(self.encoding, errors="replace").strip()
            if line:
                lines.append(line)
        return lines

    def clear(self):
        """Drop any partial line."""
        self._partial = b""
