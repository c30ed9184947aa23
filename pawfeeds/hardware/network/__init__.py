"""Station-mode network links."""

from pawfeeds.hardware.network.base import AccessPoint, NetworkLink, dedupe_access_points
from pawfeeds.hardware.network.nmcli_link import NmcliNetworkLink
from pawfeeds.hardware.network.static_link import StaticNetworkLink

__all__ = [
    "AccessPoint",
    "NetworkLink",
    "NmcliNetworkLink",
    "StaticNetworkLink",
    "dedupe_access_points",
]
