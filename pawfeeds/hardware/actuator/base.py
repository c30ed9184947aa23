"""Servo driver contract used by the actuation controller."""

from __future__ import annotations

from abc import ABC, abstractmethod


class ServoDriver(ABC):
    """Positions one continuous-rotation servo per bowl."""

    name: str = "base"

    @property
    @abstractmethod
    def bowls(self) -> frozenset[int]:
        """Bowl numbers wired to a servo."""

    @abstractmethod
    def write(self, bowl: int, angle: float) -> None:
        """Drive the bowl's servo to `angle` degrees."""

    def has_bowl(self, bowl: int) -> bool:
        return int(bowl) in self.bowls

    def close(self) -> None:
        """Release hardware resources."""
