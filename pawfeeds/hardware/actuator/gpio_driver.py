"""gpiozero servo driver for Raspberry Pi class boards."""

from __future__ import annotations

from typing import Any

from loguru import logger

from pawfeeds.hardware.actuator.base import ServoDriver


class GpioServoDriver(ServoDriver):
    """One `gpiozero.AngularServo` per bowl pin."""

    name = "gpio"

    def __init__(
        self,
        bowl_pins: dict[int, int],
        *,
        min_angle: float = 0.0,
        max_angle: float = 180.0,
        servo_factory: Any | None = None,
    ) -> None:
        if servo_factory is None:
            from gpiozero import AngularServo

            servo_factory = AngularServo
        self._servos: dict[int, Any] = {}
        for bowl, pin in sorted(bowl_pins.items()):
            self._servos[int(bowl)] = servo_factory(
                int(pin),
                min_angle=float(min_angle),
                max_angle=float(max_angle),
            )
            logger.info(f"[servo] bowl {bowl} attached to GPIO{pin}")

    @property
    def bowls(self) -> frozenset[int]:
        return frozenset(self._servos)

    def write(self, bowl: int, angle: float) -> None:
        servo = self._servos.get(int(bowl))
        if servo is None:
            raise ValueError(f"no servo for bowl {bowl}")
        servo.angle = float(angle)

    def close(self) -> None:
        for bowl, servo in self._servos.items():
            try:
                servo.close()
            except Exception as e:
                logger.warning(f"[servo] failed to release bowl {bowl}: {e}")
        self._servos.clear()
