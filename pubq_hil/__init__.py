"""
Hardware-in-the-Loop (HIL) Harness for Publish Queue Devices

This package drives an embedded device over its serial console, watches the
events it publishes to the cloud, and sits on the UDP path between the device
and the cloud so tests can degrade the link and check retry behavior.

Two subsystems do the real work:
- monitors: wait for serial log lines or cloud events matching a predicate
- cloud proxy: relay device UDP traffic with injected latency and loss
"""

__version__ = "0.1.0"
