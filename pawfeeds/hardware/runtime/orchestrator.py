"""Bring-up state machine and the operational tick loop."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

from loguru import logger

from pawfeeds.cloud.auth import CloudAuthSession
from pawfeeds.cloud.firestore import FirestoreClient
from pawfeeds.cloud.realtime import RealtimeChannel
from pawfeeds.config.schema import Config
from pawfeeds.errors import ConfigurationError, RegistrationError
from pawfeeds.hardware.actuator.base import ServoDriver
from pawfeeds.hardware.actuator.controller import ActuationController
from pawfeeds.hardware.actuator.gpio_driver import GpioServoDriver
from pawfeeds.hardware.actuator.mock_driver import MockServoDriver
from pawfeeds.hardware.network.base import NetworkLink
from pawfeeds.hardware.network.nmcli_link import NmcliNetworkLink
from pawfeeds.hardware.network.static_link import StaticNetworkLink
from pawfeeds.hardware.observability import FeederRuntimeMetrics
from pawfeeds.hardware.runtime.command_processor import CommandStreamProcessor
from pawfeeds.hardware.runtime.registration import DeviceIdentity, RegistrationManager
from pawfeeds.hardware.runtime.schedule_engine import ScheduleEngine
from pawfeeds.hardware.runtime.state import BringUpEvent, DeviceState, initial_state, next_state
from pawfeeds.storage.preferences import KEY_OWNER_ID, KEY_PASSWORD, KEY_SSID, PreferenceStore

Sleeper = Callable[[float], Awaitable[None]]


class DeviceOrchestrator:
    """Owns the device state and runs one state handler per tick.

    Bring-up failures land in ERROR, which is terminal for this process.
    Once OPERATIONAL, cloud failures are logged and retried on later ticks.
    """

    def __init__(
        self,
        *,
        preferences: PreferenceStore,
        link: NetworkLink,
        auth: CloudAuthSession,
        registration: RegistrationManager,
        schedules: ScheduleEngine,
        processor: CommandStreamProcessor,
        channel: RealtimeChannel,
        actuator: ActuationController,
        metrics: FeederRuntimeMetrics | None = None,
        connect_attempts: int = 30,
        connect_backoff_ms: int = 500,
        tick_interval_ms: int = 100,
        error_idle_seconds: int = 10,
        stream_retry_seconds: float = 5.0,
        required_settings: dict[str, str] | None = None,
        sleep: Sleeper | None = None,
        monotonic: Callable[[], float] = time.monotonic,
        restart: Callable[[], None] | None = None,
        provisioning_listener: Any | None = None,
    ) -> None:
        self.preferences = preferences
        self.link = link
        self.auth = auth
        self.registration = registration
        self.schedules = schedules
        self.processor = processor
        self.channel = channel
        self.actuator = actuator
        self.metrics = metrics or FeederRuntimeMetrics()
        self.connect_attempts = max(1, int(connect_attempts))
        self.connect_backoff_ms = max(0, int(connect_backoff_ms))
        self.tick_interval_ms = max(1, int(tick_interval_ms))
        self.error_idle_seconds = max(1, int(error_idle_seconds))
        self.stream_retry_seconds = max(0.0, float(stream_retry_seconds))
        self.required_settings = dict(required_settings or {})
        self._sleep = sleep or asyncio.sleep
        self._monotonic = monotonic
        self._restart = restart
        self.provisioning_listener = provisioning_listener
        self._state = DeviceState.PROVISIONING
        self._booted = False
        self._running = False
        self._stop_requested = False
        self._restart_requested = False
        self._link_started = False
        self._connect_polls = 0
        self._last_halt_log: float | None = None
        self._next_stream_attempt: float | None = None
        self.identity: DeviceIdentity | None = None
        self.last_error = ""

    @property
    def state(self) -> DeviceState:
        return self._state

    @property
    def restart_requested(self) -> bool:
        return self._restart_requested

    def boot(self) -> DeviceState:
        """Choose the initial state from persisted credentials."""
        self._state = initial_state(has_credentials=self.preferences.has_credentials())
        self._booted = True
        self._link_started = False
        self._connect_polls = 0
        logger.info(f"[boot] starting in {self._state}")
        if self._state == DeviceState.PROVISIONING and self.provisioning_listener is not None:
            self.provisioning_listener.start()
        return self._state

    def _apply(self, event: BringUpEvent) -> DeviceState:
        before = self._state
        after = next_state(before, event)
        if after != before:
            self.metrics.record_transition(before, after)
            logger.info(f"[boot] {before} --{event}--> {after}")
        self._state = after
        return after

    def _fail(self, event: BringUpEvent, reason: str) -> None:
        self.last_error = reason
        logger.error(f"[boot] {reason}")
        self._apply(event)

    def credentials_saved(self) -> None:
        """Called by the provisioning listener after credentials are persisted."""
        if self._state == DeviceState.PROVISIONING:
            self._apply(BringUpEvent.CREDENTIALS_SAVED)
        self.request_restart("credentials saved")

    def request_restart(self, reason: str = "") -> None:
        """Ask `run()` to exit and hand control to the restart hook. Thread-safe."""
        logger.info(f"[boot] restart requested{f' ({reason})' if reason else ''}")
        self._restart_requested = True

    async def tick(self) -> DeviceState:
        """Run the current state's handler once."""
        if not self._booted:
            self.boot()
        self.metrics.record_tick()
        state = self._state
        if state == DeviceState.PROVISIONING:
            pass
        elif state == DeviceState.CONNECTING:
            await self._tick_connecting()
        elif state == DeviceState.AUTHENTICATING:
            await self._tick_authenticating()
        elif state == DeviceState.REGISTERING:
            await self._tick_registering()
        elif state == DeviceState.OPERATIONAL:
            await self._tick_operational()
        elif state == DeviceState.ERROR:
            self._tick_error()
        return self._state

    async def _tick_connecting(self) -> None:
        if not self._link_started:
            ssid = self.preferences.get(KEY_SSID)
            logger.info(f"[wifi] connecting to {ssid}")
            await asyncio.to_thread(self.link.begin, ssid, self.preferences.get(KEY_PASSWORD))
            self._link_started = True
        self._connect_polls += 1
        if await asyncio.to_thread(self.link.is_connected):
            logger.info(f"[wifi] connected after {self._connect_polls} poll(s)")
            self._apply(BringUpEvent.LINK_UP)
            return
        if self._connect_polls >= self.connect_attempts:
            self._fail(BringUpEvent.LINK_FAILED, f"wifi link not up after {self._connect_polls} attempts")
            return
        await self._sleep(self.connect_backoff_ms / 1000.0)

    def missing_settings(self) -> list[str]:
        """Names of cloud settings that must be set before leaving bring-up."""
        missing = [name for name, value in self.required_settings.items() if not str(value or "").strip()]
        if not self.channel.database_url and "realtime.database_url" not in missing:
            missing.append("realtime.database_url")
        return missing

    def _check_settings(self) -> bool:
        missing = self.missing_settings()
        if not missing:
            return True
        self._fail(BringUpEvent.CONFIGURATION_INVALID, f"missing cloud settings: {', '.join(missing)}")
        return False

    async def _tick_authenticating(self) -> None:
        if not self._check_settings():
            return
        if not self.auth.ready():
            logger.debug("[auth] waiting for token")
            self._apply(BringUpEvent.TOKEN_PENDING)
            return
        identity = self.registration.cached_identity()
        if identity is None:
            logger.info("[auth] token ready; no identity stored")
            self._apply(BringUpEvent.TOKEN_READY_WITHOUT_IDENTITY)
            return
        logger.info(f"[auth] token ready; identity {identity.identity_id}")
        await self._enter_operational(identity)
        self._apply(BringUpEvent.TOKEN_READY_WITH_IDENTITY)

    async def _tick_registering(self) -> None:
        if not self._check_settings():
            return
        if not self.auth.ready():
            self._apply(BringUpEvent.TOKEN_PENDING)
            return
        try:
            identity = await self.registration.register(self.preferences.get(KEY_OWNER_ID))
        except RegistrationError as e:
            where = f" at {e.step}" if e.step else ""
            self._fail(BringUpEvent.REGISTRATION_FAILED, f"registration failed{where}: {e.reason}")
            return
        await self._enter_operational(identity)
        self._apply(BringUpEvent.REGISTERED)

    async def _enter_operational(self, identity: DeviceIdentity) -> None:
        self.identity = identity
        self.schedules.bind(identity.identity_id)
        self.processor.bind(identity.identity_id)
        self.channel.set_callbacks(self.processor.on_event, self.processor.on_stream_timeout)
        self.schedules.mark_fetched()
        result = await self.schedules.fetch()
        logger.info(
            f"[scheduler] initial fetch: success={result.success} "
            f"loaded={result.loaded} skipped={result.skipped}"
        )

    async def _tick_operational(self) -> None:
        if not self.channel.active:
            await self._restart_stream()
        await self.schedules.maybe_refresh()
        await self.schedules.evaluate()
        await self.channel.drain()
        await self.processor.drain_pending()

    async def _restart_stream(self) -> None:
        now = self._monotonic()
        if self._next_stream_attempt is not None and now < self._next_stream_attempt:
            return
        self._next_stream_attempt = now + self.stream_retry_seconds
        if await self.channel.start(self.processor.node_path):
            self.metrics.stream_starts += 1

    def _tick_error(self) -> None:
        now = self._monotonic()
        if self._last_halt_log is not None and now - self._last_halt_log < self.error_idle_seconds:
            return
        self._last_halt_log = now
        logger.error(f"[boot] halting: {self.last_error or 'unrecoverable error'}")

    async def run(self) -> None:
        """Tick until `stop()`, `request_stop()` or a restart request."""
        if not self._booted:
            self.boot()
        self._running = True
        try:
            while not self._stop_requested and not self._restart_requested:
                try:
                    await self.tick()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.exception(f"[boot] tick failed in {self._state}: {e}")
                await self._sleep(self.tick_interval_ms / 1000.0)
        finally:
            await self.stop()
        if self._restart_requested and self._restart is not None:
            self._restart()

    def request_stop(self) -> None:
        """Ask `run()` to exit after the current tick. Safe from signal handlers."""
        self._stop_requested = True

    async def stop(self) -> None:
        self._stop_requested = True
        await self.channel.stop()
        if self.provisioning_listener is not None:
            self.provisioning_listener.stop()
        if not self._running:
            return
        self._running = False
        logger.info(f"[boot] stopped: {self.status_snapshot()}")

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "state": str(self._state),
            "identity_id": self.identity.identity_id if self.identity else "",
            "last_error": self.last_error,
            "stream_active": self.channel.active,
            "auth": self.auth.status_snapshot(),
            "schedules": self.schedules.status_snapshot(),
            "commands": self.processor.status_snapshot(),
            "metrics": self.metrics.snapshot(),
        }


def create_link_from_config(config: Config) -> NetworkLink:
    """Factory helper to build the selected network link."""
    backend = (config.network.backend or "nmcli").lower()
    if backend == "static":
        return StaticNetworkLink()
    if backend == "nmcli":
        return NmcliNetworkLink(
            interface=config.network.interface,
            scan_timeout_seconds=config.network.scan_timeout_seconds,
        )
    raise ConfigurationError(f"unknown network backend: {config.network.backend}")


def create_servo_driver_from_config(config: Config) -> ServoDriver:
    """Factory helper to build the selected servo driver."""
    driver = (config.actuator.driver or "mock").lower()
    if driver == "mock":
        return MockServoDriver(bowls=tuple(config.actuator.bowl_pins))
    if driver == "gpio":
        return GpioServoDriver(
            config.actuator.bowl_pins,
            min_angle=config.actuator.min_angle,
            max_angle=config.actuator.max_angle,
        )
    raise ConfigurationError(f"unknown actuator driver: {config.actuator.driver}")


def create_actuator_from_config(
    config: Config,
    *,
    driver: ServoDriver | None = None,
    metrics: FeederRuntimeMetrics | None = None,
) -> ActuationController:
    return ActuationController(
        driver or create_servo_driver_from_config(config),
        ms_per_gram=config.actuator.ms_per_gram,
        dispense_angle=config.actuator.dispense_angle,
        stop_angle=config.actuator.stop_angle,
        metrics=metrics,
    )


def build_orchestrator(
    config: Config,
    *,
    preferences: PreferenceStore | None = None,
    link: NetworkLink | None = None,
    driver: ServoDriver | None = None,
    firestore: FirestoreClient | None = None,
    channel: RealtimeChannel | None = None,
    restart: Callable[[], None] | None = None,
) -> DeviceOrchestrator:
    """Wire every runtime component from configuration."""
    metrics = FeederRuntimeMetrics()
    if preferences is None:
        preferences = PreferenceStore(config.preferences_path, namespace=config.storage.namespace)
    auth = CloudAuthSession(token=config.cloud.auth_token, token_file=config.cloud.auth_token_file)
    if firestore is None:
        firestore = FirestoreClient(
            project_id=config.cloud.project_id,
            auth=auth,
            base_url=config.cloud.firestore_base_url,
            database_id=config.cloud.database_id,
            timeout_seconds=config.cloud.timeout_seconds,
        )
    if channel is None:
        channel = RealtimeChannel(
            database_url=config.realtime.database_url,
            auth=auth,
            connect_timeout_seconds=config.cloud.timeout_seconds,
            read_timeout_seconds=config.realtime.read_timeout_seconds,
            queue_max_size=config.realtime.queue_max_size,
        )
    actuator = create_actuator_from_config(config, driver=driver, metrics=metrics)
    schedules = ScheduleEngine(
        document_store=firestore,
        actuator=actuator,
        timezone=config.schedule.timezone,
        fetch_interval_seconds=config.schedule.fetch_interval_seconds,
        evaluate_interval_seconds=config.schedule.evaluate_interval_seconds,
        page_size=config.cloud.schedules_page_size,
        feeders_collection=config.cloud.feeders_collection,
        metrics=metrics,
    )
    processor = CommandStreamProcessor(
        actuator=actuator,
        schedules=schedules,
        channel=channel,
        metrics=metrics,
        commands_path=config.realtime.commands_path,
    )
    registration = RegistrationManager(
        document_store=firestore,
        preferences=preferences,
        feeders_collection=config.cloud.feeders_collection,
        users_collection=config.cloud.users_collection,
    )
    return DeviceOrchestrator(
        preferences=preferences,
        link=link or create_link_from_config(config),
        auth=auth,
        registration=registration,
        schedules=schedules,
        processor=processor,
        channel=channel,
        actuator=actuator,
        metrics=metrics,
        connect_attempts=config.network.connect_attempts,
        connect_backoff_ms=config.network.connect_backoff_ms,
        tick_interval_ms=config.runtime.tick_interval_ms,
        error_idle_seconds=config.runtime.error_idle_seconds,
        stream_retry_seconds=config.runtime.stream_retry_seconds,
        required_settings={
            "cloud.project_id": config.cloud.project_id,
            "realtime.database_url": config.realtime.database_url,
        },
        restart=restart,
    )
