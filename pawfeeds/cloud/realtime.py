"""Realtime Database command stream over Server-Sent Events."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
from collections.abc import AsyncIterator
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from pawfeeds.cloud.auth import CloudAuthSession
from pawfeeds.cloud.firestore import CloudResult
from pawfeeds.hardware.protocol.envelope import StreamEvent, StreamEventType

# (url, headers, connect_timeout, read_timeout) -> async iterator of (event, data)
StreamOpener = Callable[[str, dict[str, str], float, float], AsyncIterator[tuple[str, str]]]
# (method, url, json_body, headers, timeout) -> status
NodeWriter = Callable[[str, str, Any, dict[str, str], float], Awaitable[int]]

EventCallback = Callable[[StreamEvent], Awaitable[None] | None]
TimeoutCallback = Callable[[bool], None]

_NO_BODY = object()


class RealtimeChannel:
    """Long-lived read stream on one database path plus node acknowledgement writes.

    A background reader task only queues decoded events; `drain()` hands them
    to the event callback from the caller's context. When the stream ends for
    any reason the channel turns inactive and the timeout callback fires.
    Nothing is replayed after a reconnect.
    """

    def __init__(
        self,
        *,
        database_url: str,
        auth: CloudAuthSession,
        connect_timeout_seconds: float = 10.0,
        read_timeout_seconds: float = 60.0,
        queue_max_size: int = 64,
        opener: StreamOpener | None = None,
        writer: NodeWriter | None = None,
    ) -> None:
        self.database_url = str(database_url or "").rstrip("/")
        self.auth = auth
        self.connect_timeout_seconds = max(0.5, float(connect_timeout_seconds))
        self.read_timeout_seconds = max(1.0, float(read_timeout_seconds))
        self.queue_max_size = max(1, int(queue_max_size))
        self._open = opener or _open_sse_stream
        self._write = writer or _http_write_node
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=self.queue_max_size)
        self._task: asyncio.Task | None = None
        self._active = False
        self._path = ""
        self._on_event: EventCallback | None = None
        self._on_timeout: TimeoutCallback | None = None
        self.dropped_events = 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def path(self) -> str:
        return self._path

    def set_callbacks(self, on_event: EventCallback, on_timeout: TimeoutCallback | None = None) -> None:
        self._on_event = on_event
        self._on_timeout = on_timeout

    def node_url(self, path: str) -> str:
        cleaned = "/".join(part for part in str(path or "").strip("/").split("/") if part)
        return f"{self.database_url}/{cleaned}.json"

    async def start(self, path: str) -> bool:
        """Begin streaming `path`. Returns False when the stream cannot be started."""
        if not self.database_url:
            logger.error("[stream] realtime.database_url is not configured")
            return False
        if not self.auth.ready():
            logger.debug("[stream] waiting for auth token before starting stream")
            return False
        await self._cancel_reader()
        self._path = "/" + str(path or "").strip("/")
        self._active = True
        self._task = asyncio.create_task(self._reader(self._path))
        logger.info(f"[stream] started on {self._path}")
        return True

    async def stop(self) -> None:
        self._active = False
        await self._cancel_reader()

    async def drain(self, max_events: int | None = None) -> int:
        """Dispatch queued events to the event callback. Returns how many were dispatched."""
        limit = self.queue_max_size if max_events is None else max(0, int(max_events))
        dispatched = 0
        while dispatched < limit:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            dispatched += 1
            if self._on_event is None:
                continue
            result = self._on_event(event)
            if inspect.isawaitable(result):
                await result
        return dispatched

    def pending_events(self) -> int:
        return self._queue.qsize()

    async def delete_node(self, path: str) -> CloudResult:
        return await self._write_node("DELETE", path, _NO_BODY)

    async def set_null(self, path: str) -> CloudResult:
        return await self._write_node("PUT", path, None)

    async def _write_node(self, method: str, path: str, body: Any) -> CloudResult:
        if not self.database_url:
            return CloudResult.failed("realtime.database_url is not configured")
        try:
            status = await self._write(
                method,
                self.node_url(path),
                body,
                self.auth.headers(),
                self.connect_timeout_seconds,
            )
        except httpx.HTTPError as e:
            return CloudResult.failed(str(e) or e.__class__.__name__)
        if status >= 400:
            return CloudResult(success=False, status=status, error=f"HTTP {status}")
        return CloudResult(success=True, status=status)

    async def _reader(self, path: str) -> None:
        timed_out = False
        reason = "stream closed by server"
        try:
            async for name, raw in self._open(
                self.node_url(path),
                self.auth.headers(),
                self.connect_timeout_seconds,
                self.read_timeout_seconds,
            ):
                event = StreamEvent.from_sse(name, raw)
                if event.event == StreamEventType.KEEP_ALIVE:
                    continue
                if event.event in {StreamEventType.CANCEL, StreamEventType.AUTH_REVOKED}:
                    reason = f"server sent {event.event}"
                    break
                self._enqueue(event)
        except asyncio.CancelledError:
            raise
        except httpx.TimeoutException as e:
            timed_out = True
            reason = f"timeout: {e.__class__.__name__}"
        except Exception as e:
            reason = f"stream error: {e}"
        self._active = False
        logger.warning(f"[stream] {path} inactive ({reason}); it will be restarted")
        if self._on_timeout is not None:
            self._on_timeout(timed_out)

    def _enqueue(self, event: StreamEvent) -> None:
        if self._queue.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                self._queue.get_nowait()
                self.dropped_events += 1
                logger.warning("[stream] event queue full; dropping oldest event")
        self._queue.put_nowait(event)

    async def _cancel_reader(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


async def _open_sse_stream(
    url: str,
    headers: dict[str, str],
    connect_timeout: float,
    read_timeout: float,
) -> AsyncIterator[tuple[str, str]]:
    request_headers = {"Accept": "text/event-stream", **headers}
    timeout = httpx.Timeout(connect_timeout, read=read_timeout)
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        async with client.stream("GET", url, headers=request_headers) as resp:
            if resp.status_code >= 400:
                raise httpx.HTTPStatusError(
                    f"stream open failed with HTTP {resp.status_code}",
                    request=resp.request,
                    response=resp,
                )
            async for item in iter_sse_events(resp.aiter_lines()):
                yield item


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[tuple[str, str]]:
    """Group SSE lines into (event, data) pairs."""
    event = ""
    data: list[str] = []
    async for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if event or data:
                yield event or "message", "\n".join(data)
            event, data = "", []
            continue
        if line.startswith(":"):
            continue
        key, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if key == "event":
            event = value
        elif key == "data":
            data.append(value)
    if event or data:
        yield event or "message", "\n".join(data)


async def _http_write_node(
    method: str,
    url: str,
    body: Any,
    headers: dict[str, str],
    timeout_seconds: float,
) -> int:
    async with httpx.AsyncClient(timeout=timeout_seconds) as client:
        if body is _NO_BODY:
            resp = await client.request(method, url, headers=headers)
        else:
            resp = await client.request(
                method,
                url,
                content=json.dumps(body),
                headers={"Content-Type": "application/json", **headers},
            )
        return resp.status_code
