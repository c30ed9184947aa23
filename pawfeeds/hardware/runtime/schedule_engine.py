"""Schedule cache sync and per-minute evaluation."""

from __future__ import annotations

import datetime
import time
from dataclasses import dataclass
from typing import Any, Callable
from zoneinfo import ZoneInfo

from loguru import logger

from pawfeeds.errors import ScheduleParseError
from pawfeeds.hardware.actuator.controller import ActuationController
from pawfeeds.hardware.observability import FeederRuntimeMetrics
from pawfeeds.hardware.protocol.schedule import Schedule, parse_schedule_document, weekday_token


@dataclass(slots=True, frozen=True)
class FetchResult:
    success: bool
    loaded: int = 0
    skipped: int = 0
    error: str = ""


class ScheduleEngine:
    """Owns the local schedule cache and fires dispenses at matching minutes.

    The cache is an immutable tuple replaced wholesale on each successful
    fetch, so an evaluation in progress keeps iterating the snapshot it
    started with.
    """

    def __init__(
        self,
        *,
        document_store: Any,
        actuator: ActuationController,
        timezone: str = "Asia/Singapore",
        fetch_interval_seconds: int = 3600,
        evaluate_interval_seconds: int = 60,
        page_size: int = 100,
        feeders_collection: str = "feeders",
        monotonic: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime.datetime] | None = None,
        metrics: FeederRuntimeMetrics | None = None,
    ) -> None:
        self.document_store = document_store
        self.actuator = actuator
        self.tz = ZoneInfo(str(timezone or "UTC"))
        self.fetch_interval_seconds = max(1, int(fetch_interval_seconds))
        self.evaluate_interval_seconds = max(1, int(evaluate_interval_seconds))
        self.page_size = max(1, int(page_size))
        self.feeders_collection = str(feeders_collection or "feeders").strip("/")
        self._monotonic = monotonic
        self._wall_clock = wall_clock
        self.metrics = metrics or FeederRuntimeMetrics()
        self.identity_id = ""
        self._schedules: tuple[Schedule, ...] = ()
        self._last_fetch_mono: float | None = None
        self._last_checked: datetime.datetime | None = None
        self._last_evaluated_mono: float | None = None
        self._fired: dict[str, tuple[datetime.date, int, int]] = {}

    @property
    def schedules(self) -> tuple[Schedule, ...]:
        return self._schedules

    def bind(self, identity_id: str) -> None:
        self.identity_id = str(identity_id or "").strip()

    @property
    def collection_path(self) -> str:
        return f"{self.feeders_collection}/{self.identity_id}/schedules"

    async def fetch(self) -> FetchResult:
        """Replace the cache with the remote schedule collection.

        Malformed documents are skipped. A failed listing keeps the old cache.
        """
        if not self.identity_id:
            return FetchResult(success=False, error="no identity")
        logger.info(f"[scheduler] fetching schedules from {self.collection_path}")
        result = await self.document_store.list_all_documents(self.collection_path, page_size=self.page_size)
        if not result.success:
            logger.error(f"[scheduler] failed to list schedules: {result.error}")
            self.metrics.record_schedule_fetch(success=False)
            return FetchResult(success=False, error=result.error)

        loaded: list[Schedule] = []
        skipped = 0
        for document in result.data.get("documents") or []:
            try:
                schedule = parse_schedule_document(document)
            except ScheduleParseError as e:
                skipped += 1
                logger.warning(f"[scheduler] skipping malformed schedule: {e}")
                continue
            loaded.append(schedule)
            logger.info(
                f"[scheduler] loaded schedule {schedule.id} at {schedule.time_label} "
                f"bowl={schedule.bowl} portion={schedule.portion_grams}g "
                f"days={''.join(sorted(schedule.repeat_days))} enabled={'yes' if schedule.enabled else 'no'}"
            )
        self._schedules = tuple(loaded)
        self.metrics.record_schedule_fetch(success=True)
        return FetchResult(success=True, loaded=len(loaded), skipped=skipped)

    def mark_fetched(self) -> None:
        """Restart the periodic refresh timer."""
        self._last_fetch_mono = self._monotonic()

    def fetch_due(self) -> bool:
        if self._last_fetch_mono is None:
            return True
        return self._monotonic() - self._last_fetch_mono >= self.fetch_interval_seconds

    async def maybe_refresh(self) -> FetchResult | None:
        """Periodic fetch; returns None when the interval has not elapsed."""
        if not self.fetch_due():
            return None
        self.mark_fetched()
        return await self.fetch()

    def local_now(self) -> datetime.datetime:
        if self._wall_clock is not None:
            return self._wall_clock()
        return datetime.datetime.now(self.tz)

    def _to_local(self, now: datetime.datetime | None) -> datetime.datetime:
        if now is None:
            now = self.local_now()
        if now.tzinfo is not None:
            return now.astimezone(self.tz).replace(tzinfo=None)
        return now

    async def evaluate(self, now: datetime.datetime | None = None) -> list[Schedule]:
        """Trigger every enabled schedule matching the current local minute.

        At most one real evaluation per `evaluate_interval_seconds` on the
        monotonic clock; other calls return an empty list. A schedule never
        fires twice for the same local date and minute, so a wall clock
        stepping backwards cannot repeat a dispense. Minutes skipped while
        the loop was blocked are not caught up.
        """
        mono = self._monotonic()
        if self._last_evaluated_mono is not None:
            if mono - self._last_evaluated_mono < self.evaluate_interval_seconds:
                return []
        self._last_evaluated_mono = mono
        local = self._to_local(now)
        self._last_checked = local
        minute_key = (local.date(), local.hour, local.minute)

        snapshot = self._schedules
        token = weekday_token(local)
        triggered: list[Schedule] = []
        for schedule in snapshot:
            if not schedule.enabled or not schedule.matches(local):
                continue
            if self._fired.get(schedule.id) == minute_key:
                logger.warning(f"[scheduler] schedule {schedule.id} already fired at {schedule.time_label}; skipping")
                continue
            self._fired[schedule.id] = minute_key
            logger.info(f"[scheduler] triggering schedule {schedule.id} ({schedule.time_label} {token})")
            self.metrics.schedule_triggers += 1
            triggered.append(schedule)
            await self.actuator.dispense(schedule.bowl, schedule.portion_grams, source=f"schedule:{schedule.id}")
        return triggered

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "identity_id": self.identity_id,
            "schedules": [s.to_dict() for s in self._schedules],
            "last_checked": self._last_checked.isoformat() if self._last_checked else None,
            "timezone": str(self.tz),
        }
