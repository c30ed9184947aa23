"""Capacity-1 handoff between stream dispatch and the tick loop."""

from __future__ import annotations

from pawfeeds.hardware.protocol.envelope import CommandEnvelope


class PendingCommandSlot:
    """Holds at most one staged command.

    `put` overwrites whatever is staged. That loss is intentional: commands
    only reach the slot after passing the timestamp check, so the replaced
    command is never newer than its replacement.
    """

    def __init__(self) -> None:
        self._item: CommandEnvelope | None = None

    def put(self, command: CommandEnvelope) -> CommandEnvelope | None:
        """Stage `command`; returns the command it replaced, if any."""
        replaced = self._item
        self._item = command
        return replaced

    def take(self) -> CommandEnvelope | None:
        item = self._item
        self._item = None
        return item

    def peek(self) -> CommandEnvelope | None:
        return self._item

    def clear(self) -> None:
        self._item = None

    def __len__(self) -> int:
        return 0 if self._item is None else 1
