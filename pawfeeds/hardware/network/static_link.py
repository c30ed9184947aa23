"""Link for hosts whose connectivity is managed outside pawfeeds."""

from __future__ import annotations

from pawfeeds.hardware.network.base import AccessPoint, NetworkLink, dedupe_access_points


class StaticNetworkLink(NetworkLink):
    """Reports a fixed link state; used on wired hosts, in simulation and tests."""

    name = "static"

    def __init__(
        self,
        *,
        connected: bool = True,
        access_points: list[AccessPoint] | None = None,
        connect_after_polls: int = 0,
    ) -> None:
        self.connected = bool(connected)
        self.access_points = list(access_points or [])
        self.connect_after_polls = max(0, int(connect_after_polls))
        self.begin_calls: list[str] = []
        self.polls = 0

    def begin(self, ssid: str, password: str) -> None:
        del password
        self.begin_calls.append(ssid)

    def is_connected(self) -> bool:
        self.polls += 1
        return self.connected and self.polls > self.connect_after_polls

    def scan(self) -> list[AccessPoint]:
        return dedupe_access_points(self.access_points)
