"""Realtime command envelope and stream event types."""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any

from pawfeeds.errors import CommandParseError


def now_ms() -> int:
    """Current timestamp in milliseconds."""
    return int(time.time() * 1000)


class CommandKind(StrEnum):
    """Instructions the backend can write to the command node."""

    FEED = "feed"
    REFETCH_SCHEDULES = "refetch_schedules"
    UNKNOWN = "unknown"


class StreamEventType(StrEnum):
    """Server-Sent Event names emitted by the realtime database stream."""

    PUT = "put"
    PATCH = "patch"
    KEEP_ALIVE = "keep-alive"
    CANCEL = "cancel"
    AUTH_REVOKED = "auth_revoked"


@dataclass(slots=True, frozen=True)
class StreamEvent:
    """One decoded event from the command stream."""

    event: str
    path: str = ""
    data: Any = None
    received_at_ms: int = 0

    @classmethod
    def from_sse(cls, event: str, raw_data: str) -> "StreamEvent":
        """Decode an SSE `event:`/`data:` pair.

        `put`/`patch` carry `{"path": ..., "data": ...}`; other events carry
        either `null` or a plain string.
        """
        name = str(event or "").strip()
        text = str(raw_data or "").strip()
        path = ""
        data: Any = None
        if text:
            try:
                decoded = json.loads(text)
            except json.JSONDecodeError:
                decoded = text
            if isinstance(decoded, dict) and name in {StreamEventType.PUT, StreamEventType.PATCH}:
                path = str(decoded.get("path") or "")
                data = decoded.get("data")
            else:
                data = decoded
        return cls(event=name, path=path, data=data, received_at_ms=now_ms())

    @property
    def is_root_document(self) -> bool:
        """True for a put/patch of a JSON object at the stream root."""
        return (
            self.event in {StreamEventType.PUT, StreamEventType.PATCH}
            and self.path == "/"
            and isinstance(self.data, dict)
        )


@dataclass(slots=True, frozen=True)
class CommandEnvelope:
    """One realtime instruction written by the backend."""

    kind: CommandKind
    raw_kind: str
    timestamp: int = 0
    bowl: int = 0
    amount: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> "CommandEnvelope":
        """Build an envelope from the command node JSON object.

        Numeric fields that are missing or not numeric decode as 0.
        """
        if not isinstance(data, dict):
            raise CommandParseError("command payload must be a JSON object")
        raw_kind = str(data.get("command") or "").strip()
        if not raw_kind:
            raise CommandParseError("command is required")
        try:
            kind = CommandKind(raw_kind)
        except ValueError:
            kind = CommandKind.UNKNOWN
        return cls(
            kind=kind,
            raw_kind=raw_kind,
            timestamp=_to_int(data.get("timestamp")),
            bowl=_to_int(data.get("bowl")),
            amount=_to_int(data.get("amount")),
        )

    @property
    def is_dispensable(self) -> bool:
        return self.bowl > 0 and self.amount > 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary."""
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        pass
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
