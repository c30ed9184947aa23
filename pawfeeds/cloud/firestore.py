"""Firestore REST client for feeder identity and schedule documents."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from urllib.parse import quote

import httpx
from loguru import logger

from pawfeeds.cloud.auth import CloudAuthSession
from pawfeeds.hardware.protocol.schedule import encode_fields

# (method, url, params, json_body, headers, timeout) -> (status, json_payload)
JsonRequester = Callable[
    [str, str, dict[str, Any], Any, dict[str, str], float],
    Awaitable[tuple[int, Any]],
]


@dataclass(slots=True)
class CloudResult:
    """Outcome of one cloud call; failures are values, not exceptions."""

    success: bool
    status: int = 0
    data: dict[str, Any] = field(default_factory=dict)
    error: str = ""

    @classmethod
    def failed(cls, error: str, *, status: int = 0) -> "CloudResult":
        return cls(success=False, status=status, error=str(error))


class FirestoreClient:
    """Create, patch and list documents through the Firestore REST API."""

    def __init__(
        self,
        *,
        project_id: str,
        auth: CloudAuthSession,
        base_url: str = "https://firestore.googleapis.com/v1",
        database_id: str = "(default)",
        timeout_seconds: float = 10.0,
        requester: JsonRequester | None = None,
    ) -> None:
        self.project_id = str(project_id or "").strip()
        self.auth = auth
        self.base_url = str(base_url or "").rstrip("/")
        self.database_id = str(database_id or "(default)").strip()
        self.timeout_seconds = max(0.5, float(timeout_seconds))
        self._request = requester or _http_request_json
        self._last_error = ""

    @property
    def documents_root(self) -> str:
        return (
            f"{self.base_url}/projects/{quote(self.project_id, safe='')}"
            f"/databases/{quote(self.database_id, safe='()')}/documents"
        )

    def document_url(self, path: str) -> str:
        cleaned = "/".join(quote(part, safe="") for part in str(path or "").strip("/").split("/") if part)
        return f"{self.documents_root}/{cleaned}"

    async def create_document(self, collection: str, values: dict[str, Any]) -> CloudResult:
        """Create a document with a server-assigned id; `data["name"]` holds its path."""
        return await self._call(
            "POST",
            self.document_url(collection),
            params={},
            body={"fields": encode_fields(values)},
        )

    async def patch_document(
        self,
        path: str,
        values: dict[str, Any],
        *,
        update_mask: list[str] | None = None,
    ) -> CloudResult:
        mask = list(update_mask if update_mask is not None else values.keys())
        return await self._call(
            "PATCH",
            self.document_url(path),
            params={"updateMask.fieldPaths": mask} if mask else {},
            body={"fields": encode_fields(values)},
        )

    async def list_documents(
        self,
        collection_path: str,
        *,
        page_size: int = 100,
        page_token: str = "",
    ) -> CloudResult:
        params: dict[str, Any] = {"pageSize": max(1, int(page_size))}
        if page_token:
            params["pageToken"] = page_token
        return await self._call("GET", self.document_url(collection_path), params=params, body=None)

    async def list_all_documents(self, collection_path: str, *, page_size: int = 100) -> CloudResult:
        """Follow `nextPageToken` until the collection is exhausted."""
        documents: list[Any] = []
        token = ""
        pages = 0
        while True:
            result = await self.list_documents(collection_path, page_size=page_size, page_token=token)
            if not result.success:
                return result
            pages += 1
            page_docs = result.data.get("documents") or []
            if isinstance(page_docs, list):
                documents.extend(page_docs)
            token = str(result.data.get("nextPageToken") or "")
            if not token:
                break
        return CloudResult(success=True, status=200, data={"documents": documents, "pages": pages})

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "base_url": self.base_url,
            "last_error": self._last_error,
        }

    async def _call(self, method: str, url: str, *, params: dict[str, Any], body: Any) -> CloudResult:
        if not self.project_id:
            return CloudResult.failed("cloud.project_id is not configured")
        headers = self.auth.headers()
        try:
            status, payload = await self._request(method, url, params, body, headers, self.timeout_seconds)
        except httpx.HTTPError as e:
            self._last_error = str(e) or e.__class__.__name__
            logger.debug(f"firestore {method} {url} failed: {self._last_error}")
            return CloudResult.failed(self._last_error)
        data = payload if isinstance(payload, dict) else {}
        if status >= 400:
            self._last_error = _error_message(status, data)
            return CloudResult(success=False, status=status, data=data, error=self._last_error)
        self._last_error = ""
        return CloudResult(success=True, status=status, data=data)


def _error_message(status: int, data: dict[str, Any]) -> str:
    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return f"HTTP {status}: {error['message']}"
    return f"HTTP {status}"


async def _http_request_json(
    method: str,
    url: str,
    params: dict[str, Any],
    body: Any,
    headers: dict[str, str],
    timeout_seconds: float,
) -> tuple[int, Any]:
    async with httpx.AsyncClient(timeout=timeout_seconds) as client:
        resp = await client.request(method, url, params=params, json=body, headers=headers)
        try:
            data = resp.json()
        except ValueError:
            data = {}
        return resp.status_code, data
