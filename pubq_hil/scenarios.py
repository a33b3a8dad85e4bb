"""
Scenario runner.

Runs named async scenarios against a Harness one after another. Shared state
is reset before each scenario, and a failing scenario is logged and recorded
without stopping the run.
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Mapping, Optional

import structlog

from .common.errors import HarnessError
from .harness import Harness

logger = structlog.get_logger()

Scenario = Callable[[Harness, str], Awaitable[None]]
BeforeEach = Callable[[Harness, str], Awaitable[None]]


class ScenarioSkipped(HarnessError):
    """Raised by a scenario that cannot run with the current settings."""


class ScenarioStatus(Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ScenarioResult:
    name: str
    status: ScenarioStatus
    duration_s: float
    error: Optional[BaseException] = None


class ScenarioRunner:
    """Runs scenarios in order against one harness."""

    def __init__(self, harness: Harness, scenarios: Mapping[str, Scenario],
                 skip_reset_tests: bool = False, skip_proxy_tests: bool = False,
                 start_with: str = "", before_each: Optional[BeforeEach] = None):
        self.harness = harness
        self.scenarios = dict(scenarios)
        self.skip_reset_tests = skip_reset_tests
        self.skip_proxy_tests = skip_proxy_tests
        self.start_with = start_with
        self.before_each = before_each
        self.results: List[ScenarioResult] = []

    @classmethod
    def from_config(cls, harness: Harness, scenarios: Mapping[str, Scenario],
                    before_each: Optional[BeforeEach] = None) -> 'ScenarioRunner':
        settings = harness.config.scenarios
        return cls(
            harness,
            scenarios,
            skip_reset_tests=settings.skip_reset_tests,
            skip_proxy_tests=settings.skip_proxy_tests,
            start_with=settings.start_with,
            before_each=before_each
        )

    def require_proxy(self, name: str):
        """Skip the calling scenario when cloud proxy scenarios are disabled."""
        if self.skip_proxy_tests:
            raise ScenarioSkipped(f"skipping {name} (skip_proxy_tests)")

    def require_reset(self, name: str):
        """Skip the calling scenario when device reset scenarios are disabled."""
        if self.skip_reset_tests:
            raise ScenarioSkipped(f"skipping {name} (skip_reset_tests)")

    def selected(self) -> List[str]:
        """Scenario names to run, honouring start_with."""
        names = list(self.scenarios)
        if self.start_with:
            if self.start_with not in self.scenarios:
                raise HarnessError(f"unknown scenario {self.start_with!r}")
            names = names[names.index(self.start_with):]
        return names

    async def run(self) -> List[ScenarioResult]:
        """Run every selected scenario and return their results."""
        for name in self.selected():
            self.results.append(await self.run_one(name))

        failed = [r.name for r in self.results if r.status is ScenarioStatus.FAILED]
        logger.info("scenarios_complete", total=len(self.results), failed=failed)
        return self.results

    async def run_one(self, name: str) -> ScenarioResult:
        logger.info("scenario_starting", scenario=name)
        self.harness.reset()
        start = time.monotonic()
        try:
            if self.before_each is not None:
                await self.before_each(self.harness, name)
            await self.scenarios[name](self.harness, name)
        except ScenarioSkipped as exc:
            logger.info("scenario_skipped", scenario=name, reason=str(exc))
            return ScenarioResult(name, ScenarioStatus.SKIPPED, time.monotonic() - start, exc)
        except Exception as exc:
            duration = time.monotonic() - start
            logger.error("scenario_failed", scenario=name, error=str(exc), exc_info=True)
            return ScenarioResult(name, ScenarioStatus.FAILED, duration, exc)

        duration = time.monotonic() - start
        logger.info("scenario_completed", scenario=name, duration_ms=int(duration * 1000))
        return ScenarioResult(name, ScenarioStatus.PASSED, duration)
