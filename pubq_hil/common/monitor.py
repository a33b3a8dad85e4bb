"""
Generic correlation engine for waiting on observed records.

A monitor pairs a predicate (built from an options object) with an optional
timeout. The engine evaluates every pending monitor against each new record
in registration order and completes the ones that match. Serial log lines
and cloud events both run on this engine; only the options and record types
differ.
"""
import asyncio
import dataclasses
import itertools
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, Type, TypeVar, Union

import structlog

from .errors import MonitorTimeoutError, UnexpectedResultError
from .history import HistoryLog

logger = structlog.get_logger()

COUNTER_WIDTH = 8
COUNTER_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
DEFAULT_SEQUENCE_TIMEOUT = 15.0

NO_MATCH: Tuple[bool, Any] = (False, None)


def counter_string(counter: int, size: Optional[int] = None) -> str:
    """
    Build the payload a device publishes for a given counter value.

    The counter is zero-padded to 8 digits. When size is larger than that,
    the string is extended with a repeating A-Z run starting at 'A'.

    Args:
        counter: Counter value
        size: Total payload length, or None for the bare padded counter

    Returns:
        The exact string to match, e.g. "00000005" or "00000005AB"
    """
    text = str(counter).zfill(COUNTER_WIDTH)
    if size:
        start = len(text)
        text += "".join(
            COUNTER_ALPHABET[(ii - start) % len(COUNTER_ALPHABET)]
            for ii in range(start, size)
        )
    return text


@dataclass(frozen=True)
class MonitorOptions:
    """Options shared by every monitor, regardless of record type."""
    timeout: Optional[float] = None
    expect_timeout: bool = False
    history_only: bool = False
    no_history_check: bool = False
    detail: str = ""

    def match(self, record: Any) -> Tuple[bool, Any]:
        """Return (matched, value) for a record. The base options match anything."""
        return True, record

    def with_exact(self, text: str) -> 'MonitorOptions':
        """Copy of these options that also requires an exact payload match."""
        raise NotImplementedError

    def describe(self) -> str:
        """Short description used in timeout messages."""
        if self.detail:
            return self.detail
        fields = {
            f.name: getattr(self, f.name)
            for f in dataclasses.fields(self)
            if getattr(self, f.name) != f.default
        }
        return " ".join(f"{name}={value!r}" for name, value in fields.items())


R = TypeVar("R")
O = TypeVar("O", bound=MonitorOptions)


class MonitorState(Enum):
    """Lifecycle of a monitor. Only one transition out of PENDING happens."""
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class Monitor(Generic[O]):
    """A registered waiter for a future matching record."""

    def __init__(self, kind: str, options: O, future: "asyncio.Future[Any]"):
        self.kind = kind
        self.options = options
        self.future = future
        self.created_at = time.monotonic()
        self.state = MonitorState.PENDING
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self.state is MonitorState.PENDING

    @property
    def has_timer(self) -> bool:
        return self._timer is not None

    def arm(self, loop: asyncio.AbstractEventLoop, on_expire):
        """Start the timeout timer, if the options ask for one."""
        if self.options.timeout is not None:
            self._timer = loop.call_later(self.options.timeout, on_expire, self)

    def offer(self, record: Any) -> bool:
        """Test a record; complete the monitor and return True if it matches."""
        if not self.pending:
            return False
        matched, value = self.options.match(record)
        if not matched:
            return False
        self.complete(value)
        return True

    def complete(self, value: Any):
        """A record matched."""
        self._disarm()
        if self.options.expect_timeout:
            self.state = MonitorState.REJECTED
            logger.warning("monitor_unexpected_result", kind=self.kind,
                           options=self.options.describe())
            self._fail(UnexpectedResultError(self.kind, self.options, value))
        else:
            self.state = MonitorState.RESOLVED
            if not self.future.done():
                self.future.set_result(value)

    def expire(self):
        """The timeout elapsed without a match."""
        if not self.pending:
            return
        self._timer = None
        if self.options.expect_timeout:
            self.state = MonitorState.RESOLVED
            logger.info("monitor_absence_confirmed", kind=self.kind,
                        options=self.options.describe())
            if not self.future.done():
                self.future.set_result(None)
        else:
            self.state = MonitorState.REJECTED
            logger.warning("monitor_timeout", kind=self.kind,
                           options=self.options.describe())
            self._fail(MonitorTimeoutError(self.kind, self.options, self.options.describe()))

    def abandon(self):
        """The caller cancelled the future; stop waiting."""
        if self.pending:
            self.state = MonitorState.REJECTED
        self._disarm()

    def _fail(self, exc: Exception):
        if not self.future.done():
            self.future.set_exception(exc)

    def _disarm(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class CorrelationEngine(Generic[R, O]):
    """
    Matches incoming records against pending monitors.

    Subclasses set `kind` (used in messages) and `options_type` (the options
    dataclass that builds predicates for their record type).
    """

    kind = "record"
    options_type: Type[MonitorOptions] = MonitorOptions

    def __init__(self, history: Optional[HistoryLog[R]] = None):
        self.history: HistoryLog[R] = history if history is not None else HistoryLog()
        self._monitors: List[Monitor[O]] = []
        self._sequence = itertools.count(1)

    @property
    def monitors(self) -> List[Monitor[O]]:
        """Currently pending monitors, in registration order."""
        return list(self._monitors)

    def next_sequence(self) -> int:
        """Arrival number for the next record. Not affected by reset()."""
        return next(self._sequence)

    def append_record(self, record: R) -> R:
        """
        Store a record and complete every pending monitor it matches.

        Each monitor's predicate is independent, so one record may complete
        several monitors.
        """
        self.history.append(record)
        for monitor in list(self._monitors):
            if monitor.offer(record):
                self._discard(monitor)
        return record

    def check_history(self, options: Optional[O] = None, **fields) -> bool:
        """True if any record already in the history matches."""
        matched, _ = self._search_history(self._options(options, fields))
        return matched

    def wait(self, options: Optional[O] = None, **fields) -> Union[bool, "asyncio.Future[Any]"]:
        """
        Wait for a record matching the options.

        Options may be passed as an options object or as keyword fields.

        Returns:
            With history_only set, a bool telling whether the history holds a
            match. Otherwise a future that resolves with the matched record's
            value. A match already in the history (unless no_history_check)
            completes the future immediately without registering a monitor.
            In expect_timeout mode the future resolves with None on timeout
            and fails with UnexpectedResultError on a match.
        """
        options = self._options(options, fields)
        if options.history_only:
            return self._search_history(options)[0]

        loop = asyncio.get_running_loop()
        future = loop.create_future()

        if not options.no_history_check:
            matched, value = self._search_history(options)
            if matched:
                if options.expect_timeout:
                    logger.warning("monitor_unexpected_result", kind=self.kind,
                                   options=options.describe(), source="history")
                    future.set_exception(UnexpectedResultError(self.kind, options, value))
                else:
                    future.set_result(value)
                return future

        monitor = Monitor(self.kind, options, future)
        self._monitors.append(monitor)
        monitor.arm(loop, self._expire)
        future.add_done_callback(lambda _: self._settle(monitor))
        return future

    def wait_for_counted_sequence(self, options: Optional[O] = None, start: int = 0,
                                  num: int = 1, size: Optional[int] = None,
                                  **fields) -> "asyncio.Future[List[Any]]":
        """
        Wait for num consecutive counter payloads starting at start.

        Each counter value gets its own monitor on counter_string(counter, size).
        The group fails as soon as any member fails.
        """
        options = self._options(options, fields)
        if options.history_only:
            raise ValueError("counted sequences cannot be history-only")
        if options.timeout is None:
            options = dataclasses.replace(options, timeout=DEFAULT_SEQUENCE_TIMEOUT)

        futures = [
            self.wait(options.with_exact(counter_string(counter, size)))
            for counter in range(start, start + num)
        ]
        return asyncio.gather(*futures)

    def reset(self):
        """Clear the history. Pending monitors keep waiting."""
        self.history.reset()

    def _options(self, options: Optional[O], fields: Dict[str, Any]) -> O:
        if options is None:
            return self.options_type(**fields)
        if fields:
            return dataclasses.replace(options, **fields)
        return options

    def _search_history(self, options: O) -> Tuple[bool, Any]:
        for record in self.history:
            matched, value = options.match(record)
            if matched:
                return matched, value
        return NO_MATCH

    def _expire(self, monitor: Monitor[O]):
        monitor.expire()
        self._discard(monitor)

    def _settle(self, monitor: Monitor[O]):
        if monitor.future.cancelled():
            monitor.abandon()
        self._discard(monitor)

    def _discard(self, monitor: Monitor[O]):
        if monitor in self._monitors:
            self._monitors.remove(monitor)
