"""
Serial console monitor.

Consumes the device's serial output, keeps a history of log lines, and lets
scenarios wait for lines or send commands and await the device's reply.
"""
import dataclasses
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple

import structlog

from .errors import HarnessError
from .monitor import NO_MATCH, CorrelationEngine, MonitorOptions
from .records import LineBuffer, LogRecord

logger = structlog.get_logger()

SerialWriter = Callable[[bytes], Awaitable[None]]

DEFAULT_COMMAND_TIMEOUT = 5.0


@dataclass(frozen=True)
class SerialOptions(MonitorOptions):
    """Predicate fields for serial log lines. Every field given must hold."""
    category: Optional[str] = None
    level: Optional[str] = None
    msg_is: Optional[str] = None
    msg_includes: Optional[str] = None
    line_includes: Optional[str] = None
    msg_json: bool = False
    msg_any: bool = False

    def match(self, record: LogRecord) -> Tuple[bool, Any]:
        # Command replies take whatever line comes next
        if self.msg_any:
            return True, record.message if record.parsed else record.line

        structured = (self.category is not None or self.level is not None
                      or self.msg_is is not None or self.msg_includes is not None
                      or self.msg_json)
        if structured and not record.parsed:
            return NO_MATCH

        if self.category is not None and record.category != self.category:
            return NO_MATCH
        if self.level is not None and record.level != self.level:
            return NO_MATCH
        if self.msg_is is not None and record.message != self.msg_is:
            return NO_MATCH
        if self.msg_includes is not None and self.msg_includes not in record.message:
            return NO_MATCH
        if self.line_includes is not None and self.line_includes not in record.line:
            return NO_MATCH

        if self.msg_json:
            try:
                return True, json.loads(record.message)
            except ValueError:
                return NO_MATCH
        return True, record.line

    def with_exact(self, text: str) -> 'SerialOptions':
        return dataclasses.replace(self, msg_is=text)


class SerialMonitor(CorrelationEngine[LogRecord, SerialOptions]):
    """Correlation engine over the device's serial log."""

    kind = "serial"
    options_type = SerialOptions

    def __init__(self, writer: Optional[SerialWriter] = None,
                 command_timeout: float = DEFAULT_COMMAND_TIMEOUT):
        super().__init__()
        self.writer = writer
        self.command_timeout = command_timeout
        self._buffer = LineBuffer()

    def feed(self, data: bytes):
        """Ingest bytes read from the serial port."""
        for line in self._buffer.feed(data):
            self.feed_line(line)

    def feed_line(self, line: str) -> Optional[LogRecord]:
        """Ingest one already-split line. Blank lines are ignored."""
        line = line.strip()
        if not line:
            return None
        logger.info("serial_line", line=line)
        return self.append_record(LogRecord.parse(line, self.next_sequence()))

    async def write(self, text: str):
        """Write raw text to the device."""
        if self.writer is None:
            raise HarnessError("no serial writer attached")
        await self.writer(text.encode("utf-8"))

    async def command(self, cmd: str, timeout: Optional[float] = None) -> str:
        """
        Send a console command and return the next log message.

        Args:
            cmd: Command text, without the trailing newline
            timeout: Seconds to wait for the reply (defaults to command_timeout)

        Returns:
            The message part of the first line received after the command
        """
        reply = self.wait(SerialOptions(
            msg_any=True,
            no_history_check=True,
            timeout=self._command_timeout(timeout),
            detail=f"cmd={cmd}"
        ))
        await self._send(cmd, reply)
        return await reply

    async def json_command(self, cmd: str, timeout: Optional[float] = None) -> Any:
        """Send a console command whose reply is a JSON message and return it decoded."""
        reply = self.wait(SerialOptions(
            msg_json=True,
            no_history_check=True,
            timeout=self._command_timeout(timeout),
            detail=f"cmd={cmd} (json)"
        ))
        await self._send(cmd, reply)
        return await reply

    async def _send(self, cmd: str, reply):
        try:
            await self.write(cmd + "\n")
        except BaseException:
            reply.cancel()
            raise

    def _command_timeout(self, timeout: Optional[float]) -> float:
        return self.command_timeout if timeout is None else timeout
