from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from pawfeeds.cloud import CloudAuthSession, FirestoreClient, RealtimeChannel
from pawfeeds.cloud.realtime import iter_sse_events
from pawfeeds.hardware.protocol import StreamEvent


class RecordingRequester:
    def __init__(self, responses: list[tuple[int, Any]] | None = None) -> None:
        self.responses = list(responses or [(200, {})])
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, method, url, params, body, headers, timeout):  # type: ignore[no-untyped-def]
        self.calls.append(
            {
                "method": method,
                "url": url,
                "params": dict(params),
                "body": body,
                "headers": dict(headers),
                "timeout": timeout,
            }
        )
        return self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]


def _firestore(requester: Any, *, project_id: str = "demo", token: str = "tok") -> FirestoreClient:
    return FirestoreClient(project_id=project_id, auth=CloudAuthSession(token=token), requester=requester)


@pytest.mark.asyncio
async def test_create_document_posts_typed_fields_with_bearer_token() -> None:
    requester = RecordingRequester([(200, {"name": "projects/demo/databases/(default)/documents/feeders/abc"})])
    client = _firestore(requester)

    result = await client.create_document("feeders", {"owner_uid": "u1", "online": True})

    assert result.success is True
    assert result.data["name"].endswith("/feeders/abc")
    call = requester.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://firestore.googleapis.com/v1/projects/demo/databases/(default)/documents/feeders"
    assert call["body"] == {"fields": {"owner_uid": {"stringValue": "u1"}, "online": {"booleanValue": True}}}
    assert call["headers"]["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
async def test_patch_document_sends_update_mask() -> None:
    requester = RecordingRequester()
    client = _firestore(requester)

    await client.patch_document("users/u1", {"feederId": "abc"}, update_mask=["feederId"])

    call = requester.calls[0]
    assert call["method"] == "PATCH"
    assert call["url"].endswith("/documents/users/u1")
    assert call["params"] == {"updateMask.fieldPaths": ["feederId"]}
    assert call["body"] == {"fields": {"feederId": {"stringValue": "abc"}}}


@pytest.mark.asyncio
async def test_list_all_documents_collects_every_page() -> None:
    requester = RecordingRequester(
        [
            (200, {"documents": [{"name": "a"}], "nextPageToken": "t2"}),
            (200, {"documents": [{"name": "b"}, {"name": "c"}]}),
        ]
    )
    client = _firestore(requester)

    result = await client.list_all_documents("feeders/f1/schedules", page_size=2)

    assert result.success is True
    assert [d["name"] for d in result.data["documents"]] == ["a", "b", "c"]
    assert result.data["pages"] == 2
    assert requester.calls[0]["params"] == {"pageSize": 2}
    assert requester.calls[1]["params"] == {"pageSize": 2, "pageToken": "t2"}


@pytest.mark.asyncio
async def test_list_of_empty_collection_has_no_documents() -> None:
    client = _firestore(RecordingRequester([(200, {})]))

    result = await client.list_all_documents("feeders/f1/schedules")

    assert result.success is True
    assert result.data["documents"] == []


@pytest.mark.asyncio
async def test_http_error_status_becomes_failed_result() -> None:
    client = _firestore(RecordingRequester([(403, {"error": {"message": "Missing permissions"}})]))

    result = await client.patch_document("users/u1", {"feederId": "abc"})

    assert result.success is False
    assert result.status == 403
    assert result.error == "HTTP 403: Missing permissions"
    assert client.status_snapshot()["last_error"] == result.error


@pytest.mark.asyncio
async def test_transport_error_becomes_failed_result() -> None:
    async def _boom(method, url, params, body, headers, timeout):  # type: ignore[no-untyped-def]
        raise httpx.ConnectError("network unreachable")

    client = _firestore(_boom)

    result = await client.list_documents("feeders/f1/schedules")

    assert result.success is False
    assert "unreachable" in result.error


@pytest.mark.asyncio
async def test_missing_project_id_fails_without_request() -> None:
    requester = RecordingRequester()
    client = _firestore(requester, project_id="")

    result = await client.create_document("feeders", {"online": True})

    assert result.success is False
    assert requester.calls == []


def test_auth_session_prefers_token_file(tmp_path) -> None:
    token_file = tmp_path / "token"
    token_file.write_text("from-file\n")
    session = CloudAuthSession(token="static", token_file=str(token_file))

    assert session.headers() == {"Authorization": "Bearer from-file"}
    token_file.unlink()
    assert session.token() == "static"
    assert CloudAuthSession().ready() is False


async def _lines(items: list[str]):  # type: ignore[no-untyped-def]
    for item in items:
        yield item


@pytest.mark.asyncio
async def test_iter_sse_events_groups_event_and_data_lines() -> None:
    lines = [
        "event: put",
        'data: {"path": "/", "data": null}',
        "",
        ": comment",
        "event: keep-alive",
        "data: null",
        "",
        "event: patch",
        'data: {"path": "/",',
        'data:  "data": {"a": 1}}',
    ]

    events = [item async for item in iter_sse_events(_lines(lines))]

    assert events[0] == ("put", '{"path": "/", "data": null}')
    assert events[1] == ("keep-alive", "null")
    assert events[2][0] == "patch"
    assert json.loads(events[2][1]) == {"path": "/", "data": {"a": 1}}


class FakeStream:
    def __init__(self, items: list[tuple[str, str]], *, error: Exception | None = None) -> None:
        self.items = items
        self.error = error
        self.urls: list[str] = []
        self.headers: list[dict[str, str]] = []

    async def __call__(self, url, headers, connect_timeout, read_timeout):  # type: ignore[no-untyped-def]
        self.urls.append(url)
        self.headers.append(dict(headers))
        for item in self.items:
            yield item
        if self.error is not None:
            raise self.error


async def _settle(channel: RealtimeChannel) -> None:
    for _ in range(20):
        if not channel.active:
            return
        await asyncio.sleep(0)


def _put(data: Any, path: str = "/") -> tuple[str, str]:
    return "put", json.dumps({"path": path, "data": data})


@pytest.mark.asyncio
async def test_channel_queues_events_until_drained() -> None:
    stream = FakeStream([_put({"command": "feed"}), ("keep-alive", "null"), _put(3, path="/amount")])
    channel = RealtimeChannel(database_url="https://db.example.com/", auth=CloudAuthSession(token="tok"), opener=stream)
    seen: list[StreamEvent] = []
    timeouts: list[bool] = []

    async def _on_event(event: StreamEvent) -> None:
        seen.append(event)

    channel.set_callbacks(_on_event, timeouts.append)

    assert await channel.start("commands/f1") is True
    assert channel.path == "/commands/f1"
    await _settle(channel)

    assert seen == []
    assert channel.pending_events() == 2
    assert await channel.drain() == 2
    assert [e.is_root_document for e in seen] == [True, False]
    assert stream.urls == ["https://db.example.com/commands/f1.json"]
    assert stream.headers[0]["Authorization"] == "Bearer tok"
    assert channel.active is False
    assert timeouts == [False]


@pytest.mark.asyncio
async def test_channel_reports_read_timeout() -> None:
    stream = FakeStream([], error=httpx.ReadTimeout("idle"))
    channel = RealtimeChannel(database_url="https://db.example.com", auth=CloudAuthSession(token="tok"), opener=stream)
    timeouts: list[bool] = []
    channel.set_callbacks(lambda event: None, timeouts.append)

    await channel.start("/commands/f1")
    await _settle(channel)

    assert channel.active is False
    assert timeouts == [True]


@pytest.mark.asyncio
async def test_channel_stops_on_cancel_event() -> None:
    stream = FakeStream([("cancel", "null"), _put({"command": "feed"})])
    channel = RealtimeChannel(database_url="https://db.example.com", auth=CloudAuthSession(token="tok"), opener=stream)
    timeouts: list[bool] = []
    channel.set_callbacks(lambda event: None, timeouts.append)

    await channel.start("/commands/f1")
    await _settle(channel)

    assert channel.pending_events() == 0
    assert timeouts == [False]


@pytest.mark.asyncio
async def test_channel_does_not_start_without_url_or_token() -> None:
    stream = FakeStream([])
    no_url = RealtimeChannel(database_url="", auth=CloudAuthSession(token="tok"), opener=stream)
    no_token = RealtimeChannel(database_url="https://db.example.com", auth=CloudAuthSession(), opener=stream)

    assert await no_url.start("/commands/f1") is False
    assert await no_token.start("/commands/f1") is False
    assert stream.urls == []


@pytest.mark.asyncio
async def test_channel_queue_drops_oldest_when_full() -> None:
    stream = FakeStream([_put({"n": i}) for i in range(5)])
    channel = RealtimeChannel(
        database_url="https://db.example.com",
        auth=CloudAuthSession(token="tok"),
        queue_max_size=2,
        opener=stream,
    )
    seen: list[Any] = []
    channel.set_callbacks(lambda event: seen.append(event.data))

    await channel.start("/commands/f1")
    await _settle(channel)
    await channel.drain()

    assert seen == [{"n": 3}, {"n": 4}]
    assert channel.dropped_events == 3


@pytest.mark.asyncio
async def test_channel_acknowledgement_writes() -> None:
    writes: list[tuple[str, str, Any]] = []

    async def _writer(method, url, body, headers, timeout):  # type: ignore[no-untyped-def]
        writes.append((method, url, body))
        return 200 if method == "DELETE" else 500

    channel = RealtimeChannel(
        database_url="https://db.example.com",
        auth=CloudAuthSession(token="tok"),
        opener=FakeStream([]),
        writer=_writer,
    )

    deleted = await channel.delete_node("/commands/f1")
    cleared = await channel.set_null("/commands/f1")

    assert deleted.success is True
    assert cleared.success is False
    assert cleared.error == "HTTP 500"
    assert [(m, u) for m, u, _ in writes] == [
        ("DELETE", "https://db.example.com/commands/f1.json"),
        ("PUT", "https://db.example.com/commands/f1.json"),
    ]
    assert writes[1][2] is None
