"""Cloud backend clients: document store, realtime channel and auth session."""

from pawfeeds.cloud.auth import CloudAuthSession
from pawfeeds.cloud.firestore import CloudResult, FirestoreClient
from pawfeeds.cloud.realtime import RealtimeChannel

__all__ = [
    "CloudAuthSession",
    "CloudResult",
    "FirestoreClient",
    "RealtimeChannel",
]
