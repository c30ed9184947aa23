"""Bring-up states and their transition table."""

from __future__ import annotations

from enum import StrEnum


class DeviceState(StrEnum):
    """High-level state of the feeder; exactly one is active."""

    PROVISIONING = "provisioning"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    REGISTERING = "registering"
    OPERATIONAL = "operational"
    ERROR = "error"


class BringUpEvent(StrEnum):
    """Outcomes reported by state handlers."""

    CREDENTIALS_SAVED = "credentials_saved"
    LINK_UP = "link_up"
    LINK_FAILED = "link_failed"
    TOKEN_PENDING = "token_pending"
    TOKEN_READY_WITH_IDENTITY = "token_ready_with_identity"
    TOKEN_READY_WITHOUT_IDENTITY = "token_ready_without_identity"
    REGISTERED = "registered"
    REGISTRATION_FAILED = "registration_failed"
    CONFIGURATION_INVALID = "configuration_invalid"


TERMINAL_STATES = frozenset({DeviceState.OPERATIONAL, DeviceState.ERROR})

TRANSITIONS: dict[tuple[DeviceState, BringUpEvent], DeviceState] = {
    # Saving credentials restarts the device; the fresh boot picks CONNECTING.
    (DeviceState.PROVISIONING, BringUpEvent.CREDENTIALS_SAVED): DeviceState.PROVISIONING,
    (DeviceState.CONNECTING, BringUpEvent.LINK_UP): DeviceState.AUTHENTICATING,
    (DeviceState.CONNECTING, BringUpEvent.LINK_FAILED): DeviceState.ERROR,
    (DeviceState.AUTHENTICATING, BringUpEvent.TOKEN_PENDING): DeviceState.AUTHENTICATING,
    (DeviceState.AUTHENTICATING, BringUpEvent.TOKEN_READY_WITH_IDENTITY): DeviceState.OPERATIONAL,
    (DeviceState.AUTHENTICATING, BringUpEvent.TOKEN_READY_WITHOUT_IDENTITY): DeviceState.REGISTERING,
    (DeviceState.AUTHENTICATING, BringUpEvent.CONFIGURATION_INVALID): DeviceState.ERROR,
    (DeviceState.REGISTERING, BringUpEvent.TOKEN_PENDING): DeviceState.REGISTERING,
    (DeviceState.REGISTERING, BringUpEvent.REGISTERED): DeviceState.OPERATIONAL,
    (DeviceState.REGISTERING, BringUpEvent.REGISTRATION_FAILED): DeviceState.ERROR,
    (DeviceState.REGISTERING, BringUpEvent.CONFIGURATION_INVALID): DeviceState.ERROR,
}


def initial_state(*, has_credentials: bool) -> DeviceState:
    """State chosen by a fresh boot from persisted credentials."""
    return DeviceState.CONNECTING if has_credentials else DeviceState.PROVISIONING


def next_state(state: DeviceState, event: BringUpEvent) -> DeviceState:
    """Pure transition function; raises ValueError for an event the state does not accept."""
    try:
        return TRANSITIONS[(DeviceState(state), BringUpEvent(event))]
    except KeyError:
        raise ValueError(f"invalid transition: {state} --{event}-->") from None
