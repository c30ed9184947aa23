"""Wi-Fi link contract used during bring-up and provisioning."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(slots=True, frozen=True)
class AccessPoint:
    """One discovered access point."""

    ssid: str
    rssi: int

    def to_dict(self) -> dict[str, Any]:
        # The companion app reads `rssi`; `signal_strength` is the same dBm value.
        return {"ssid": self.ssid, "signal_strength": self.rssi, "rssi": self.rssi}


def dedupe_access_points(items: list[AccessPoint]) -> list[AccessPoint]:
    """Keep the strongest entry per SSID, strongest first, hidden SSIDs dropped."""
    best: dict[str, AccessPoint] = {}
    for item in items:
        if not item.ssid:
            continue
        current = best.get(item.ssid)
        if current is None or item.rssi > current.rssi:
            best[item.ssid] = item
    return sorted(best.values(), key=lambda ap: ap.rssi, reverse=True)


class NetworkLink(ABC):
    """Station-mode Wi-Fi link."""

    name: str = "base"

    @abstractmethod
    def begin(self, ssid: str, password: str) -> None:
        """Start associating with `ssid`. Completion is observed via `is_connected`."""

    @abstractmethod
    def is_connected(self) -> bool:
        """True once the link is up."""

    @abstractmethod
    def scan(self) -> list[AccessPoint]:
        """Discover nearby access points."""
