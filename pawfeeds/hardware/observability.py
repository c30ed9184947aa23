"""Runtime observability counters for the feeder loop."""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class FeederRuntimeMetrics:
    """In-memory counters for feeder runtime observability."""

    started_at_ms: int = field(default_factory=now_ms)
    ticks_total: int = 0
    transitions: list[tuple[str, str]] = field(default_factory=list)
    dispense_total: int = 0
    dispense_grams_total: int = 0
    dispense_by_source: Counter[str] = field(default_factory=Counter)
    dispense_ignored_total: int = 0
    commands_accepted: int = 0
    commands_duplicate: int = 0
    commands_rejected: int = 0
    commands_overwritten: int = 0
    ack_failures: int = 0
    schedule_fetch_total: int = 0
    schedule_fetch_failed: int = 0
    schedule_triggers: int = 0
    stream_starts: int = 0
    stream_disconnects: int = 0
    last_dispense_ms: int = 0

    def record_tick(self) -> None:
        self.ticks_total += 1

    def record_transition(self, before: str, after: str) -> None:
        self.transitions.append((str(before), str(after)))

    def record_dispense(self, *, grams: int, source: str) -> None:
        self.dispense_total += 1
        self.dispense_grams_total += max(0, int(grams))
        self.dispense_by_source[str(source or "unknown")] += 1
        self.last_dispense_ms = now_ms()

    def record_dispense_ignored(self) -> None:
        self.dispense_ignored_total += 1

    def record_schedule_fetch(self, *, success: bool) -> None:
        self.schedule_fetch_total += 1
        if not success:
            self.schedule_fetch_failed += 1

    def snapshot(self) -> dict[str, Any]:
        return {
            "started_at_ms": self.started_at_ms,
            "uptime_s": round(max(0, now_ms() - self.started_at_ms) / 1000.0, 1),
            "ticks_total": self.ticks_total,
            "transitions": [f"{a}->{b}" for a, b in self.transitions],
            "dispense_total": self.dispense_total,
            "dispense_grams_total": self.dispense_grams_total,
            "dispense_by_source": dict(self.dispense_by_source),
            "dispense_ignored_total": self.dispense_ignored_total,
            "commands_accepted": self.commands_accepted,
            "commands_duplicate": self.commands_duplicate,
            "commands_rejected": self.commands_rejected,
            "commands_overwritten": self.commands_overwritten,
            "ack_failures": self.ack_failures,
            "schedule_fetch_total": self.schedule_fetch_total,
            "schedule_fetch_failed": self.schedule_fetch_failed,
            "schedule_triggers": self.schedule_triggers,
            "stream_starts": self.stream_starts,
            "stream_disconnects": self.stream_disconnects,
            "last_dispense_ms": self.last_dispense_ms,
        }
