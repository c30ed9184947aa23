"""Exception types raised by feeder components."""

from __future__ import annotations


class FeederError(Exception):
    """Base class for feeder runtime errors."""


class ConfigurationError(FeederError):
    """Fatal misconfiguration discovered during bring-up."""


class RegistrationError(FeederError):
    """Device identity registration did not complete."""

    def __init__(self, reason: str, *, step: str = "") -> None:
        super().__init__(reason)
        self.reason = reason
        self.step = step


class ScheduleParseError(FeederError):
    """One schedule document could not be parsed."""


class CommandParseError(FeederError):
    """One realtime command payload could not be parsed."""
