"""
Tests for the publish queue HIL harness.

Everything here runs without a device: serial output and cloud events are
fed to the monitors directly, and the cloud proxy is exercised over loopback
UDP with a fake cloud endpoint.
"""
