"""Schedule model and Firestore document parsing."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any

from pawfeeds.errors import ScheduleParseError
from pawfeeds.utils.helpers import last_path_segment

# Storage letters written by the companion app, indexed Monday=0 like datetime.weekday().
WEEKDAY_TOKENS = ("M", "T", "W", "R", "F", "S", "U")

_DAY_ALIASES = {
    "mon": "M",
    "monday": "M",
    "tue": "T",
    "tues": "T",
    "tuesday": "T",
    "wed": "W",
    "wednesday": "W",
    "thu": "R",
    "thur": "R",
    "thurs": "R",
    "thursday": "R",
    "th": "R",
    "fri": "F",
    "friday": "F",
    "sat": "S",
    "saturday": "S",
    "sun": "U",
    "sunday": "U",
}


def weekday_token(moment: datetime.date) -> str:
    """Storage letter for the weekday of `moment`."""
    return WEEKDAY_TOKENS[moment.weekday()]


def normalize_day_token(value: Any) -> str:
    """Map a day token ("M", "Mon", "monday", ...) to its storage letter."""
    text = str(value or "").strip()
    if not text:
        raise ScheduleParseError("empty weekday token")
    if len(text) == 1 and text.upper() in WEEKDAY_TOKENS:
        return text.upper()
    alias = _DAY_ALIASES.get(text.lower())
    if alias is None:
        raise ScheduleParseError(f"unknown weekday token: {text!r}")
    return alias


def parse_repeat_days(values: Any) -> frozenset[str]:
    """Parse repeat days from a list of tokens or a packed string like "UMW"."""
    if values is None:
        return frozenset()
    if isinstance(values, str):
        text = values.strip()
        if text.upper() == text and all(ch in WEEKDAY_TOKENS for ch in text):
            return frozenset(text)
        values = [part for part in text.replace(",", " ").split() if part]
    if not isinstance(values, (list, tuple, set, frozenset)):
        raise ScheduleParseError("repeat days must be a list")
    return frozenset(normalize_day_token(item) for item in values)


def parse_time_of_day(value: Any) -> tuple[int, int]:
    """Parse "HH:MM" into (hour, minute)."""
    text = str(value or "").strip()
    parts = text.split(":")
    if len(parts) < 2:
        raise ScheduleParseError(f"invalid time: {text!r}")
    try:
        hour = int(parts[0])
        minute = int(parts[1])
    except ValueError as e:
        raise ScheduleParseError(f"invalid time: {text!r}") from e
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ScheduleParseError(f"time out of range: {text!r}")
    return hour, minute


@dataclass(slots=True, frozen=True)
class Schedule:
    """One recurring feeding rule."""

    id: str
    enabled: bool
    bowl: int
    portion_grams: int
    hour: int
    minute: int
    repeat_days: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.bowl <= 0:
            raise ScheduleParseError(f"bowl must be positive, got {self.bowl}")
        if self.portion_grams <= 0:
            raise ScheduleParseError(f"portion must be positive, got {self.portion_grams}")
        if not (0 <= self.hour <= 23 and 0 <= self.minute <= 59):
            raise ScheduleParseError(f"time out of range: {self.hour:02d}:{self.minute:02d}")

    @property
    def time_label(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"

    def matches(self, moment: datetime.datetime) -> bool:
        """Exact-minute and weekday match, regardless of `enabled`."""
        return (
            self.hour == moment.hour
            and self.minute == moment.minute
            and weekday_token(moment) in self.repeat_days
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "enabled": self.enabled,
            "bowl": self.bowl,
            "portion_grams": self.portion_grams,
            "time": self.time_label,
            "repeat_days": "".join(t for t in ("U", *WEEKDAY_TOKENS[:-1]) if t in self.repeat_days),
        }


def parse_schedule_document(document: dict[str, Any]) -> Schedule:
    """Parse one Firestore REST document into a Schedule.

    Raises ScheduleParseError when a required field is missing or invalid.
    """
    if not isinstance(document, dict):
        raise ScheduleParseError("schedule document must be an object")
    schedule_id = last_path_segment(str(document.get("name") or ""))
    if not schedule_id:
        raise ScheduleParseError("schedule document has no name")
    fields = document.get("fields")
    if not isinstance(fields, dict):
        raise ScheduleParseError(f"schedule {schedule_id} has no fields")

    enabled = decode_value(fields.get("isEnabled"))
    bowl = decode_value(fields.get("bowlNumber"))
    portion = decode_value(fields.get("portionGrams"))
    time_text = decode_value(fields.get("time"))
    days = decode_value(fields.get("repeatDays"))

    hour, minute = parse_time_of_day(time_text)
    try:
        return Schedule(
            id=schedule_id,
            enabled=enabled is True,
            bowl=_required_int(bowl, "bowlNumber"),
            portion_grams=_required_int(portion, "portionGrams"),
            hour=hour,
            minute=minute,
            repeat_days=parse_repeat_days(days),
        )
    except ScheduleParseError as e:
        raise ScheduleParseError(f"schedule {schedule_id}: {e}") from e


def decode_value(value: Any) -> Any:
    """Decode one Firestore typed value (`{"integerValue": "5"}` etc.)."""
    if not isinstance(value, dict):
        return None
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return value["integerValue"]
    if "doubleValue" in value:
        return value["doubleValue"]
    if "stringValue" in value:
        return str(value["stringValue"])
    if "timestampValue" in value:
        return str(value["timestampValue"])
    if "arrayValue" in value:
        items = (value.get("arrayValue") or {}).get("values") or []
        return [decode_value(item) for item in items]
    if "mapValue" in value:
        inner = (value.get("mapValue") or {}).get("fields") or {}
        return {str(k): decode_value(v) for k, v in inner.items()}
    return None


def encode_fields(values: dict[str, Any]) -> dict[str, Any]:
    """Encode plain values into a Firestore `fields` object."""
    return {str(key): _encode_value(item) for key, item in values.items()}


def _encode_value(value: Any) -> dict[str, Any]:
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [_encode_value(item) for item in value]}}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    return {"stringValue": str(value)}


def _required_int(value: Any, name: str) -> int:
    if value is None or isinstance(value, bool):
        raise ScheduleParseError(f"{name} is required")
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise ScheduleParseError(f"{name} is not an integer: {value!r}") from e
