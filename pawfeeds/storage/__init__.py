"""Persistent storage backends."""

from pawfeeds.storage.preferences import (
    KEY_IDENTITY_ID,
    KEY_OWNER_ID,
    KEY_PASSWORD,
    KEY_SSID,
    PreferenceStore,
)

__all__ = [
    "KEY_IDENTITY_ID",
    "KEY_OWNER_ID",
    "KEY_PASSWORD",
    "KEY_SSID",
    "PreferenceStore",
]
