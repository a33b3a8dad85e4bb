"""
Harness pytest configuration.
"""
import pytest_asyncio

from pubq_hil.harness import Harness


@pytest_asyncio.fixture
async def harness(harness_config):
    """Unstarted harness built from the shared config; closed after the test."""
    harness = Harness(harness_config)
    yield harness
    await harness.close()
