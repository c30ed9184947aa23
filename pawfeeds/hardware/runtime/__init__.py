"""Runtime orchestration for the feeder bring-up and operational loop."""

from pawfeeds.hardware.runtime.command_processor import CommandStreamProcessor
from pawfeeds.hardware.runtime.orchestrator import DeviceOrchestrator, build_orchestrator
from pawfeeds.hardware.runtime.pending import PendingCommandSlot
from pawfeeds.hardware.runtime.registration import DeviceIdentity, RegistrationManager
from pawfeeds.hardware.runtime.schedule_engine import FetchResult, ScheduleEngine
from pawfeeds.hardware.runtime.state import BringUpEvent, DeviceState, next_state

__all__ = [
    "BringUpEvent",
    "CommandStreamProcessor",
    "DeviceIdentity",
    "DeviceOrchestrator",
    "DeviceState",
    "FetchResult",
    "PendingCommandSlot",
    "RegistrationManager",
    "ScheduleEngine",
    "build_orchestrator",
    "next_state",
]
