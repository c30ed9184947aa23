import asyncio
import datetime
import json
from types import SimpleNamespace
from typing import Any

import pytest

from pawfeeds.cloud.auth import CloudAuthSession
from pawfeeds.cloud.firestore import CloudResult
from pawfeeds.cloud.realtime import RealtimeChannel
from pawfeeds.config.schema import Config
from pawfeeds.hardware.actuator import ActuationController, MockServoDriver
from pawfeeds.hardware.network import StaticNetworkLink
from pawfeeds.hardware.observability import FeederRuntimeMetrics
from pawfeeds.hardware.runtime import (
    CommandStreamProcessor,
    DeviceOrchestrator,
    DeviceState,
    RegistrationManager,
    ScheduleEngine,
    build_orchestrator,
)
from pawfeeds.storage.preferences import (
    KEY_IDENTITY_ID,
    KEY_OWNER_ID,
    KEY_PASSWORD,
    KEY_SSID,
    PreferenceStore,
)


def _schedule_doc(schedule_id: str, time: str) -> dict[str, Any]:
    return {
        "name": f"projects/p/databases/(default)/documents/feeders/f1/schedules/{schedule_id}",
        "fields": {
            "isEnabled": {"booleanValue": True},
            "bowlNumber": {"integerValue": "2"},
            "portionGrams": {"integerValue": "8"},
            "time": {"stringValue": time},
            "repeatDays": {"arrayValue": {"values": [{"stringValue": "M"}]}},
        },
    }


class FakeDocumentStore:
    def __init__(self, *, patch_ok: bool = True, documents: list[dict[str, Any]] | None = None) -> None:
        self.patch_ok = patch_ok
        self.documents = list(documents or [])
        self.list_calls = 0
        self.created: list[str] = []

    async def create_document(self, collection: str, values: dict[str, Any]) -> CloudResult:
        self.created.append(collection)
        return CloudResult(success=True, status=200, data={"name": f"projects/p/documents/{collection}/f1"})

    async def patch_document(self, path: str, values: dict[str, Any], *, update_mask=None) -> CloudResult:  # type: ignore[no-untyped-def]
        del path, values, update_mask
        if self.patch_ok:
            return CloudResult(success=True, status=200)
        return CloudResult.failed("HTTP 500: backend error", status=500)

    async def list_all_documents(self, collection_path: str, *, page_size: int = 100) -> CloudResult:
        del collection_path, page_size
        self.list_calls += 1
        return CloudResult(success=True, status=200, data={"documents": list(self.documents)})


class ScriptedStream:
    """Plays one scripted session per stream start; the last session stays open."""

    def __init__(self, sessions: list[list[tuple[str, str]]]) -> None:
        self.sessions = list(sessions)
        self.urls: list[str] = []

    async def __call__(self, url: str, headers: dict[str, str], connect_timeout: float, read_timeout: float):  # type: ignore[no-untyped-def]
        del headers, connect_timeout, read_timeout
        self.urls.append(url)
        script = self.sessions.pop(0) if self.sessions else []
        for item in script:
            yield item
        if not self.sessions:
            await asyncio.Event().wait()


class FakeListener:
    def __init__(self) -> None:
        self.started = 0
        self.stopped = 0

    def start(self) -> None:
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1


async def _instant(seconds: float) -> None:
    del seconds
    await asyncio.sleep(0)


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def _feed_event(ts: int) -> tuple[str, str]:
    payload = {"path": "/", "data": {"command": "feed", "timestamp": ts, "bowl": 1, "amount": 3}}
    return "put", json.dumps(payload)


def _rig(
    *,
    credentials: bool = True,
    identity: str = "",
    link: StaticNetworkLink | None = None,
    store: FakeDocumentStore | None = None,
    sessions: list[list[tuple[str, str]]] | None = None,
    token: str = "tok",
    connect_attempts: int = 3,
    listener: FakeListener | None = None,
    restart=None,  # type: ignore[no-untyped-def]
    sleep=None,  # type: ignore[no-untyped-def]
    database_url: str = "https://db.example.com",
    required_settings: dict[str, str] | None = None,
) -> SimpleNamespace:
    preferences = PreferenceStore(":memory:")
    if credentials:
        preferences.put_many({KEY_SSID: "home", KEY_PASSWORD: "secret", KEY_OWNER_ID: "user-1"})
    if identity:
        preferences.put(KEY_IDENTITY_ID, identity)
    metrics = FeederRuntimeMetrics()
    auth = CloudAuthSession(token=token)
    driver = MockServoDriver()
    actuator = ActuationController(driver, sleep=_instant, metrics=metrics)
    store = store or FakeDocumentStore()
    stream = ScriptedStream(sessions or [])
    writes: list[tuple[str, str]] = []

    async def _writer(method, url, body, headers, timeout):  # type: ignore[no-untyped-def]
        del body, headers, timeout
        writes.append((method, url))
        return 200

    clock: dict[str, Any] = {"now": datetime.datetime(2024, 1, 1, 8, 0), "mono": 100.0}
    channel = RealtimeChannel(database_url=database_url, auth=auth, opener=stream, writer=_writer)
    schedules = ScheduleEngine(
        document_store=store,
        actuator=actuator,
        wall_clock=lambda: clock["now"],
        monotonic=lambda: clock["mono"],
        metrics=metrics,
    )
    processor = CommandStreamProcessor(actuator=actuator, schedules=schedules, channel=channel, metrics=metrics)
    orchestrator = DeviceOrchestrator(
        preferences=preferences,
        link=link or StaticNetworkLink(),
        auth=auth,
        registration=RegistrationManager(document_store=store, preferences=preferences),
        schedules=schedules,
        processor=processor,
        channel=channel,
        actuator=actuator,
        metrics=metrics,
        connect_attempts=connect_attempts,
        required_settings=required_settings,
        sleep=sleep or _instant,
        monotonic=lambda: clock["mono"],
        restart=restart,
        provisioning_listener=listener,
    )
    return SimpleNamespace(
        orchestrator=orchestrator,
        preferences=preferences,
        driver=driver,
        store=store,
        stream=stream,
        writes=writes,
        clock=clock,
        metrics=metrics,
    )


@pytest.mark.asyncio
async def test_boot_without_credentials_serves_provisioning_until_saved() -> None:
    listener = FakeListener()
    restarts: list[int] = []
    rig = _rig(credentials=False, listener=listener, restart=lambda: restarts.append(1))
    orchestrator = rig.orchestrator

    assert orchestrator.boot() == DeviceState.PROVISIONING
    assert listener.started == 1
    assert await orchestrator.tick() == DeviceState.PROVISIONING

    orchestrator.credentials_saved()
    await orchestrator.run()

    assert orchestrator.restart_requested is True
    assert restarts == [1]
    assert listener.stopped == 1
    assert orchestrator.state == DeviceState.PROVISIONING


@pytest.mark.asyncio
async def test_boot_with_identity_reaches_operational_and_fetches_schedules() -> None:
    rig = _rig(identity="f1", store=FakeDocumentStore(documents=[_schedule_doc("s1", "09:00")]))
    orchestrator = rig.orchestrator

    assert orchestrator.boot() == DeviceState.CONNECTING
    assert await orchestrator.tick() == DeviceState.AUTHENTICATING
    assert await orchestrator.tick() == DeviceState.OPERATIONAL

    assert rig.store.list_calls == 1
    assert [s.id for s in orchestrator.schedules.schedules] == ["s1"]
    assert rig.store.created == []
    assert rig.metrics.transitions == [("connecting", "authenticating"), ("authenticating", "operational")]
    await orchestrator.stop()


@pytest.mark.asyncio
async def test_connect_failure_goes_to_error_after_bounded_attempts() -> None:
    link = StaticNetworkLink(connected=False)
    rig = _rig(link=link, connect_attempts=3)
    orchestrator = rig.orchestrator
    orchestrator.boot()

    states = [await orchestrator.tick() for _ in range(5)]

    assert states == [
        DeviceState.CONNECTING,
        DeviceState.CONNECTING,
        DeviceState.ERROR,
        DeviceState.ERROR,
        DeviceState.ERROR,
    ]
    assert link.begin_calls == ["home"]
    assert link.polls == 3
    assert "3 attempts" in orchestrator.last_error


@pytest.mark.asyncio
async def test_link_coming_up_within_attempts_continues_bring_up() -> None:
    link = StaticNetworkLink(connect_after_polls=2)
    rig = _rig(link=link, identity="f1", connect_attempts=5)
    orchestrator = rig.orchestrator
    orchestrator.boot()

    states = [await orchestrator.tick() for _ in range(3)]

    assert states[-1] == DeviceState.AUTHENTICATING
    assert link.begin_calls == ["home"]


@pytest.mark.asyncio
async def test_missing_token_keeps_authenticating() -> None:
    rig = _rig(identity="f1", token="")
    orchestrator = rig.orchestrator
    orchestrator.boot()

    states = [await orchestrator.tick() for _ in range(4)]

    assert states == [DeviceState.AUTHENTICATING] * 4
    assert rig.metrics.transitions == [("connecting", "authenticating")]
    assert rig.store.list_calls == 0


@pytest.mark.asyncio
async def test_first_boot_registers_then_operates() -> None:
    rig = _rig()
    orchestrator = rig.orchestrator
    orchestrator.boot()

    states = [await orchestrator.tick() for _ in range(3)]

    assert states == [DeviceState.AUTHENTICATING, DeviceState.REGISTERING, DeviceState.OPERATIONAL]
    assert rig.store.created == ["feeders"]
    assert rig.preferences.get(KEY_IDENTITY_ID) == "f1"
    assert orchestrator.identity is not None and orchestrator.identity.identity_id == "f1"
    assert rig.store.list_calls == 1
    await orchestrator.stop()


@pytest.mark.asyncio
async def test_registration_patch_failure_halts_without_identity() -> None:
    rig = _rig(store=FakeDocumentStore(patch_ok=False))
    orchestrator = rig.orchestrator
    orchestrator.boot()

    states = [await orchestrator.tick() for _ in range(5)]

    assert states[2:] == [DeviceState.ERROR] * 3
    assert rig.preferences.get(KEY_IDENTITY_ID) == ""
    assert "link" in orchestrator.last_error
    assert rig.store.list_calls == 0


@pytest.mark.asyncio
async def test_stream_disconnect_is_restarted_and_evaluation_resumes() -> None:
    store = FakeDocumentStore(documents=[_schedule_doc("s1", "08:00"), _schedule_doc("s2", "08:05")])
    rig = _rig(
        identity="f1",
        store=store,
        sessions=[
            [_feed_event(1)],
            [_feed_event(1)],
        ],
    )
    orchestrator = rig.orchestrator
    orchestrator.boot()
    await orchestrator.tick()
    await orchestrator.tick()
    assert orchestrator.state == DeviceState.OPERATIONAL

    await orchestrator.tick()
    await _settle()
    assert orchestrator.channel.active is False

    rig.clock["now"] = datetime.datetime(2024, 1, 1, 8, 5)
    rig.clock["mono"] += 300
    await orchestrator.tick()
    await _settle()
    rig.clock["now"] = datetime.datetime(2024, 1, 1, 8, 5, 30)
    rig.clock["mono"] += 30
    await orchestrator.tick()

    assert orchestrator.channel.active is True
    assert rig.metrics.stream_starts == 2
    assert rig.metrics.stream_disconnects == 1
    assert rig.stream.urls == ["https://db.example.com/commands/f1.json"] * 2
    assert rig.metrics.dispense_by_source == {"schedule:s1": 1, "schedule:s2": 1, "command": 1}
    assert rig.metrics.commands_duplicate == 1
    assert rig.writes == [("DELETE", "https://db.example.com/commands/f1.json")]
    await orchestrator.stop()
    assert orchestrator.channel.active is False


@pytest.mark.asyncio
async def test_run_ticks_until_stop_requested() -> None:
    calls = {"n": 0}
    holder: dict[str, DeviceOrchestrator] = {}

    async def _counting_sleep(seconds: float) -> None:
        del seconds
        calls["n"] += 1
        if calls["n"] >= 4:
            holder["orchestrator"].request_stop()
        await asyncio.sleep(0)

    rig = _rig(identity="f1", sleep=_counting_sleep)
    orchestrator = rig.orchestrator
    holder["orchestrator"] = orchestrator
    await orchestrator.run()

    assert orchestrator.state == DeviceState.OPERATIONAL
    assert rig.metrics.ticks_total >= 3
    assert orchestrator.channel.active is False


def test_build_orchestrator_wires_components_from_config(tmp_path) -> None:
    config = Config()
    config.network.backend = "static"
    config.actuator.ms_per_gram = 40
    config.cloud.project_id = "demo"
    config.realtime.database_url = "https://demo.firebaseio.com"
    preferences = PreferenceStore(tmp_path / "prefs.db")

    orchestrator = build_orchestrator(config, preferences=preferences)

    assert isinstance(orchestrator.link, StaticNetworkLink)
    assert isinstance(orchestrator.actuator.driver, MockServoDriver)
    assert orchestrator.actuator.ms_per_gram == 40
    assert orchestrator.actuator.driver.bowls == frozenset({1, 2})
    assert orchestrator.schedules.metrics is orchestrator.metrics
    assert orchestrator.processor.channel is orchestrator.channel
    assert orchestrator.boot() == DeviceState.PROVISIONING
    preferences.close()


@pytest.mark.asyncio
async def test_missing_database_url_halts_instead_of_operating() -> None:
    rig = _rig(identity="f1", database_url="")
    orchestrator = rig.orchestrator
    orchestrator.boot()

    states = [await orchestrator.tick() for _ in range(6)]

    assert states[1:] == [DeviceState.ERROR] * 5
    assert "realtime.database_url" in orchestrator.last_error
    assert orchestrator.channel.active is False
    assert rig.metrics.stream_starts == 0
    assert rig.store.list_calls == 0


@pytest.mark.asyncio
async def test_missing_project_id_halts_before_registering() -> None:
    rig = _rig(required_settings={"cloud.project_id": "", "realtime.database_url": "https://db.example.com"})
    orchestrator = rig.orchestrator
    orchestrator.boot()

    states = [await orchestrator.tick() for _ in range(3)]

    assert states == [DeviceState.AUTHENTICATING, DeviceState.ERROR, DeviceState.ERROR]
    assert orchestrator.last_error == "missing cloud settings: cloud.project_id"
    assert rig.store.created == []
    assert rig.metrics.transitions[-1] == ("authenticating", "error")


@pytest.mark.asyncio
async def test_failed_stream_is_retried_after_backoff() -> None:
    rig = _rig(identity="f1", sessions=[[], [], []])
    orchestrator = rig.orchestrator
    orchestrator.boot()
    await orchestrator.tick()
    await orchestrator.tick()

    await orchestrator.tick()
    await _settle()
    assert orchestrator.channel.active is False

    for _ in range(3):
        rig.clock["mono"] += 1
        await orchestrator.tick()
        await _settle()
    assert len(rig.stream.urls) == 1

    rig.clock["mono"] += 5
    await orchestrator.tick()
    await _settle()

    assert len(rig.stream.urls) == 2
    assert rig.metrics.stream_starts == 2
    assert rig.metrics.stream_disconnects == 2
    await orchestrator.stop()


@pytest.mark.asyncio
async def test_status_snapshot_reports_pending_command_and_schedules() -> None:
    store = FakeDocumentStore(documents=[_schedule_doc("s1", "09:00")])
    rig = _rig(identity="f1", store=store, sessions=[[_feed_event(7)], []])
    orchestrator = rig.orchestrator
    orchestrator.boot()
    await orchestrator.tick()
    await orchestrator.tick()
    await orchestrator.tick()
    await _settle()
    await orchestrator.channel.drain()

    snapshot = orchestrator.status_snapshot()

    assert snapshot["state"] == "operational"
    assert snapshot["identity_id"] == "f1"
    assert snapshot["auth"] == {"ready": True, "source": "static", "last_error": ""}
    assert [s["id"] for s in snapshot["schedules"]["schedules"]] == ["s1"]
    assert snapshot["commands"]["node_path"] == "/commands/f1"
    assert snapshot["commands"]["last_processed_timestamp"] == 7
    assert snapshot["commands"]["pending"]["timestamp"] == 7
    assert snapshot["commands"]["pending"]["kind"] == "feed"
    assert snapshot["metrics"]["commands_accepted"] == 1
    await orchestrator.stop()


def test_build_orchestrator_requires_cloud_settings(tmp_path) -> None:
    config = Config()
    config.network.backend = "static"
    preferences = PreferenceStore(tmp_path / "prefs.db")

    orchestrator = build_orchestrator(config, preferences=preferences)

    assert orchestrator.missing_settings() == ["cloud.project_id", "realtime.database_url"]
    preferences.close()
