"""Wire-level types shared by the cloud clients and the runtime."""

from pawfeeds.hardware.protocol.envelope import (
    CommandEnvelope,
    CommandKind,
    StreamEvent,
    StreamEventType,
)
from pawfeeds.hardware.protocol.schedule import (
    Schedule,
    parse_repeat_days,
    parse_schedule_document,
    weekday_token,
)

__all__ = [
    "CommandEnvelope",
    "CommandKind",
    "Schedule",
    "StreamEvent",
    "StreamEventType",
    "parse_repeat_days",
    "parse_schedule_document",
    "weekday_token",
]
