"""Local HTTP surfaces served by the feeder."""

from pawfeeds.api.provisioning_server import ProvisioningServer

__all__ = ["ProvisioningServer"]
