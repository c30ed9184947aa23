"""Bowl actuators and the dispense controller."""

from pawfeeds.hardware.actuator.base import ServoDriver
from pawfeeds.hardware.actuator.controller import ActuationController, DispenseResult
from pawfeeds.hardware.actuator.gpio_driver import GpioServoDriver
from pawfeeds.hardware.actuator.mock_driver import MockServoDriver

__all__ = [
    "ActuationController",
    "DispenseResult",
    "GpioServoDriver",
    "MockServoDriver",
    "ServoDriver",
]
