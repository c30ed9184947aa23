"""Duration-based dispense cycles for the bowl servos."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger

from pawfeeds.hardware.actuator.base import ServoDriver
from pawfeeds.hardware.observability import FeederRuntimeMetrics

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(slots=True, frozen=True)
class DispenseResult:
    bowl: int
    grams: int
    duration_ms: int
    source: str
    started_at_ms: int
    finished_at_ms: int


class ActuationController:
    """Open-loop dispenser: rotate for `grams * ms_per_gram`, then stop.

    A dispense holds the actuator lock for its whole duration, so two
    triggers never drive servos at the same time. The caller awaiting
    `dispense` is blocked for the full duration as well.
    """

    def __init__(
        self,
        driver: ServoDriver,
        *,
        ms_per_gram: int = 50,
        dispense_angle: float = 0.0,
        stop_angle: float = 90.0,
        sleep: Sleeper | None = None,
        metrics: FeederRuntimeMetrics | None = None,
    ) -> None:
        self.driver = driver
        self.ms_per_gram = max(1, int(ms_per_gram))
        self.dispense_angle = float(dispense_angle)
        self.stop_angle = float(stop_angle)
        self._sleep = sleep or asyncio.sleep
        self.metrics = metrics or FeederRuntimeMetrics()
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def duration_ms(self, grams: int) -> int:
        return max(0, int(grams)) * self.ms_per_gram

    async def dispense(self, bowl: int, grams: int, *, source: str = "manual") -> DispenseResult | None:
        """Run one dispense cycle. Unknown bowls and empty portions are ignored."""
        if not self.driver.has_bowl(bowl):
            logger.warning(f"[servo] ignoring dispense for unknown bowl {bowl} ({grams} g, source={source})")
            self.metrics.record_dispense_ignored()
            return None
        if int(grams) <= 0:
            logger.warning(f"[servo] ignoring dispense of {grams} g for bowl {bowl}")
            self.metrics.record_dispense_ignored()
            return None

        duration_ms = self.duration_ms(grams)
        async with self._lock:
            logger.info(f"[servo] dispensing {grams} g from bowl {bowl} for {duration_ms} ms ({source})")
            started = int(time.time() * 1000)
            self.driver.write(bowl, self.dispense_angle)
            try:
                await self._sleep(duration_ms / 1000.0)
            finally:
                self.driver.write(bowl, self.stop_angle)
            finished = int(time.time() * 1000)
        self.metrics.record_dispense(grams=int(grams), source=source)
        return DispenseResult(
            bowl=int(bowl),
            grams=int(grams),
            duration_ms=duration_ms,
            source=source,
            started_at_ms=started,
            finished_at_ms=finished,
        )

    def close(self) -> None:
        self.driver.close()
