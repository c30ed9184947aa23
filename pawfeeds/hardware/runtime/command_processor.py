"""Realtime command handling: timestamp de-dup, staging and acknowledgement."""

from __future__ import annotations

from typing import Any

from loguru import logger

from pawfeeds.errors import CommandParseError
from pawfeeds.hardware.actuator.controller import ActuationController, DispenseResult
from pawfeeds.hardware.observability import FeederRuntimeMetrics
from pawfeeds.hardware.protocol.envelope import CommandEnvelope, CommandKind, StreamEvent
from pawfeeds.hardware.runtime.pending import PendingCommandSlot

OUTCOME_IGNORED = "ignored"
OUTCOME_INVALID = "invalid"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_REJECTED = "rejected"
OUTCOME_STAGED = "staged"
OUTCOME_REFETCHED = "refetched"
OUTCOME_UNKNOWN = "unknown"


class CommandStreamProcessor:
    """Turns stream events into at most one dispense per accepted command.

    `on_event` runs inside the tick (via the channel drain) and only stages
    feed commands; `drain_pending` performs the dispense and clears the
    command node afterwards.
    """

    def __init__(
        self,
        *,
        actuator: ActuationController,
        schedules: Any,
        channel: Any,
        metrics: FeederRuntimeMetrics | None = None,
        commands_path: str = "/commands",
    ) -> None:
        self.actuator = actuator
        self.schedules = schedules
        self.channel = channel
        self.metrics = metrics or FeederRuntimeMetrics()
        self.commands_path = "/" + str(commands_path or "/commands").strip("/")
        self.slot = PendingCommandSlot()
        self.identity_id = ""
        self.last_processed_timestamp = 0

    def bind(self, identity_id: str) -> None:
        self.identity_id = str(identity_id or "").strip()

    @property
    def node_path(self) -> str:
        return f"{self.commands_path}/{self.identity_id}"

    async def on_event(self, event: StreamEvent) -> str:
        """Handle one decoded stream event and return what happened to it."""
        if not event.is_root_document:
            logger.debug(f"[command] ignoring {event.event or 'message'} event at {event.path or '-'}")
            return OUTCOME_IGNORED
        try:
            command = CommandEnvelope.from_dict(event.data)
        except CommandParseError as e:
            logger.warning(f"[command] invalid command payload: {e}")
            self.metrics.commands_rejected += 1
            return OUTCOME_INVALID

        if command.kind == CommandKind.FEED:
            return self._stage_feed(command)
        if command.kind == CommandKind.REFETCH_SCHEDULES:
            await self._refetch()
            return OUTCOME_REFETCHED
        logger.debug(f"[command] unknown command '{command.raw_kind}' ignored")
        return OUTCOME_UNKNOWN

    def _stage_feed(self, command: CommandEnvelope) -> str:
        if command.timestamp <= self.last_processed_timestamp:
            logger.debug(
                f"[command] duplicate feed ts={command.timestamp} "
                f"(last={self.last_processed_timestamp})"
            )
            self.metrics.commands_duplicate += 1
            return OUTCOME_DUPLICATE
        if not command.is_dispensable:
            logger.warning(
                f"[command] rejecting feed ts={command.timestamp}: "
                f"bowl={command.bowl} amount={command.amount}"
            )
            self.metrics.commands_rejected += 1
            return OUTCOME_REJECTED

        self.last_processed_timestamp = command.timestamp
        replaced = self.slot.put(command)
        self.metrics.commands_accepted += 1
        if replaced is not None:
            self.metrics.commands_overwritten += 1
            logger.warning(f"[command] pending feed ts={replaced.timestamp} replaced by ts={command.timestamp}")
        logger.info(f"[command] feed accepted: bowl {command.bowl}, {command.amount} g (ts={command.timestamp})")
        return OUTCOME_STAGED

    async def _refetch(self) -> None:
        logger.info("[command] refetch_schedules received")
        result = await self.schedules.fetch()
        if not result.success:
            logger.warning(f"[command] schedule refetch failed: {result.error}")
        cleared = await self.channel.set_null(self.node_path)
        if not cleared.success:
            self.metrics.ack_failures += 1
            logger.error(f"[command] failed to clear command node {self.node_path}: {cleared.error}")

    async def drain_pending(self) -> DispenseResult | None:
        """Dispense the staged command, if any, then delete the command node."""
        command = self.slot.take()
        if command is None:
            return None
        result = await self.actuator.dispense(command.bowl, command.amount, source="command")
        deleted = await self.channel.delete_node(self.node_path)
        if not deleted.success:
            self.metrics.ack_failures += 1
            logger.error(f"[command] failed to delete command node {self.node_path}: {deleted.error}")
        return result

    def on_stream_timeout(self, timed_out: bool) -> None:
        self.metrics.stream_disconnects += 1
        if timed_out:
            logger.warning("[stream] read timed out; restarting on next tick")
        else:
            logger.warning("[stream] disconnected; restarting on next tick")

    def status_snapshot(self) -> dict[str, Any]:
        pending = self.slot.peek()
        return {
            "node_path": self.node_path,
            "last_processed_timestamp": self.last_processed_timestamp,
            "pending": pending.to_dict() if pending else None,
        }
