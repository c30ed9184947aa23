"""NetworkManager (`nmcli`) backed Wi-Fi link."""

from __future__ import annotations

import subprocess
from typing import Callable, Sequence

from loguru import logger

from pawfeeds.hardware.network.base import AccessPoint, NetworkLink, dedupe_access_points

CommandRunner = Callable[[Sequence[str], float], tuple[int, str]]


def _run_command(args: Sequence[str], timeout: float) -> tuple[int, str]:
    try:
        proc = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        return 127, str(e)
    output = proc.stdout if proc.returncode == 0 else (proc.stderr or proc.stdout)
    return proc.returncode, output


def signal_percent_to_dbm(percent: int) -> int:
    """NetworkManager reports 0-100 quality; map to the usual -100..-50 dBm scale."""
    value = max(0, min(100, int(percent)))
    return value // 2 - 100


def split_terse_line(line: str) -> list[str]:
    """Split an `nmcli -t` line on unescaped colons."""
    fields: list[str] = []
    current: list[str] = []
    escaped = False
    for ch in line:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ":":
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
    fields.append("".join(current))
    return fields


class NmcliNetworkLink(NetworkLink):
    """Drives the station interface through `nmcli`."""

    name = "nmcli"

    def __init__(
        self,
        *,
        interface: str = "wlan0",
        connect_timeout_seconds: float = 15.0,
        scan_timeout_seconds: float = 10.0,
        runner: CommandRunner | None = None,
    ) -> None:
        self.interface = str(interface or "wlan0").strip()
        self.connect_timeout_seconds = max(1.0, float(connect_timeout_seconds))
        self.scan_timeout_seconds = max(1.0, float(scan_timeout_seconds))
        self._run = runner or _run_command

    def begin(self, ssid: str, password: str) -> None:
        args = [
            "nmcli",
            "--wait",
            str(int(self.connect_timeout_seconds)),
            "device",
            "wifi",
            "connect",
            ssid,
        ]
        if password:
            args += ["password", password]
        args += ["ifname", self.interface]
        code, output = self._run(args, self.connect_timeout_seconds + 5.0)
        if code != 0:
            logger.warning(f"[wifi] nmcli connect returned {code}: {output.strip()}")

    def is_connected(self) -> bool:
        code, output = self._run(
            ["nmcli", "-t", "-f", "DEVICE,STATE", "device", "status"],
            5.0,
        )
        if code != 0:
            return False
        for line in output.splitlines():
            fields = split_terse_line(line.strip())
            if len(fields) >= 2 and fields[0] == self.interface:
                return fields[1] == "connected"
        return False

    def scan(self) -> list[AccessPoint]:
        code, output = self._run(
            [
                "nmcli",
                "-t",
                "-f",
                "SSID,SIGNAL",
                "device",
                "wifi",
                "list",
                "--rescan",
                "yes",
                "ifname",
                self.interface,
            ],
            self.scan_timeout_seconds,
        )
        if code != 0:
            logger.warning(f"[wifi] scan failed: {output.strip()}")
            return []
        found: list[AccessPoint] = []
        for line in output.splitlines():
            fields = split_terse_line(line.rstrip("\n"))
            if len(fields) < 2:
                continue
            try:
                percent = int(fields[-1])
            except ValueError:
                continue
            found.append(AccessPoint(ssid=":".join(fields[:-1]), rssi=signal_percent_to_dbm(percent)))
        return dedupe_access_points(found)
