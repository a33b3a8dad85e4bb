"""
Network interface discovery for the cloud proxy's listening socket.
"""
import ipaddress
import socket
from typing import Dict, List, Optional, Tuple

import psutil
import structlog

from .errors import ConfigurationError

logger = structlog.get_logger()


def viable_interfaces() -> Dict[str, List[str]]:
    """Map interface name to its non-loopback IPv4 addresses."""
    results: Dict[str, List[str]] = {}
    for name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            if ipaddress.ip_address(addr.address).is_loopback:
                continue
            results.setdefault(name, []).append(addr.address)
    return results


def select_bind_address(interface: Optional[str] = None) -> Tuple[str, str]:
    """
    Pick the local address the proxy should listen on.

    Args:
        interface: Interface name from configuration, or None to auto-detect

    Returns:
        (interface name, IPv4 address)

    Raises:
        ConfigurationError: the named interface is not usable, or no
            interface was named and there is not exactly one candidate
    """
    candidates = viable_interfaces()

    if interface:
        if interface not in candidates:
            raise ConfigurationError(
                f"interface {interface!r} has no usable IPv4 address "
                f"(candidates: {sorted(candidates)})"
            )
        name = interface
    elif not candidates:
        raise ConfigurationError("no viable network interfaces found")
    elif len(candidates) > 1:
        raise ConfigurationError(
            f"more than one viable interface, set proxy.interface: {candidates}"
        )
    else:
        name = next(iter(candidates))

    address = candidates[name][0]
    logger.info("proxy_interface_selected", interface=name, address=address)
    return name, address
