"""
Error types raised by the harness.

Configuration errors are fatal and stop the run before anything starts.
Timeouts and unexpected results are delivered to the waiting scenario,
which may catch them and carry on.
"""
from typing import Any, Optional


class HarnessError(Exception):
    """Base class for all harness errors."""


class ConfigurationError(HarnessError):
    """Missing endpoint or credential, or no usable network interface."""


class MonitorTimeoutError(HarnessError):
    """A monitor's predicate did not match before its timeout."""

    def __init__(self, kind: str, options: Any, detail: Optional[str] = None):
        self.kind = kind
        self.options = options
        self.detail = detail if detail is not None else repr(options)
        super().__init__(f"{kind} timeout {self.detail}")


class UnexpectedResultError(HarnessError):
    """A record matched a monitor that expected nothing to arrive."""

    def __init__(self, kind: str, options: Any, value: Any = None):
        self.kind = kind
        self.options = options
        self.value = value
        super().__init__("unexpected result")
