"""In-memory servo driver used for local simulation and tests."""

from __future__ import annotations

import time
from dataclasses import dataclass

from pawfeeds.hardware.actuator.base import ServoDriver


@dataclass(slots=True, frozen=True)
class ServoWrite:
    bowl: int
    angle: float
    at: float


class MockServoDriver(ServoDriver):
    """Records every position write instead of driving a pin."""

    name = "mock"

    def __init__(self, bowls: tuple[int, ...] | list[int] = (1, 2)) -> None:
        self._bowls = frozenset(int(b) for b in bowls)
        self.writes: list[ServoWrite] = []
        self.closed = False

    @property
    def bowls(self) -> frozenset[int]:
        return self._bowls

    def write(self, bowl: int, angle: float) -> None:
        if not self.has_bowl(bowl):
            raise ValueError(f"no servo for bowl {bowl}")
        self.writes.append(ServoWrite(bowl=int(bowl), angle=float(angle), at=time.monotonic()))

    def position(self, bowl: int) -> float | None:
        """Last written angle for a bowl."""
        for item in reversed(self.writes):
            if item.bowl == bowl:
                return item.angle
        return None

    def close(self) -> None:
        self.closed = True
