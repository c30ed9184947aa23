"""Local provisioning listener: network scan and credential capture."""

from __future__ import annotations

import html
import json
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable
from urllib.parse import parse_qs, urlparse

from loguru import logger

from pawfeeds.hardware.network.base import NetworkLink
from pawfeeds.storage.preferences import KEY_OWNER_ID, KEY_PASSWORD, KEY_SSID, PreferenceStore

SAVED_PAGE = "<h1>Saved! Restarting...</h1>"

STATUS_PAGE = """<!doctype html>
<html><head><title>PawFeeds setup</title></head>
<body>
<h1>PawFeeds setup</h1>
<p>Access point: {ap}</p>
<p>Use the PawFeeds app to choose a network and link this feeder.</p>
</body></html>
"""


def json_response(data: Any) -> bytes:
    """Serialize JSON response payload."""
    return json.dumps(data, ensure_ascii=False).encode("utf-8")


def _first_form_value(params: dict[str, list[str]], key: str) -> str:
    values = params.get(key, [])
    return str(values[0]).strip() if values else ""


class _ProvisioningRequestHandler(BaseHTTPRequestHandler):
    """Serves the companion app while the device has no Wi-Fi credentials."""

    link: NetworkLink | None = None
    preferences: PreferenceStore | None = None
    on_saved: Callable[[], None] | None = None
    access_point_ssid: str = ""
    max_request_body_bytes: int = 4096

    server_version = "pawfeeds-setup/0.1"

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        if parsed.path in {"", "/"}:
            self._send_html(HTTPStatus.OK, STATUS_PAGE.format(ap=html.escape(self.access_point_ssid)))
            return
        if parsed.path == "/networks":
            self._get_networks()
            return
        self._send_json(HTTPStatus.NOT_FOUND, {"success": False, "error": "unknown endpoint"})

    def do_POST(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        if parsed.path == "/save":
            self._post_save()
            return
        self._send_json(HTTPStatus.NOT_FOUND, {"success": False, "error": "unknown endpoint"})

    def log_message(self, fmt: str, *args: Any) -> None:
        logger.debug("[provisioning] " + fmt % args)

    def _get_networks(self) -> None:
        if self.link is None:
            self._send_json(HTTPStatus.SERVICE_UNAVAILABLE, {"success": False, "error": "no network link"})
            return
        try:
            networks = self.link.scan()
        except Exception as e:
            logger.warning(f"[provisioning] scan failed: {e}")
            self._send_json(HTTPStatus.INTERNAL_SERVER_ERROR, {"success": False, "error": "scan failed"})
            return
        logger.info(f"[provisioning] scan found {len(networks)} network(s)")
        self._send_json(HTTPStatus.OK, [ap.to_dict() for ap in networks])

    def _post_save(self) -> None:
        form = self._read_form_body()
        if form is None:
            return
        ssid = _first_form_value(form, "ssid")
        owner_id = _first_form_value(form, "uid")
        if not ssid or not owner_id:
            self._send_json(HTTPStatus.BAD_REQUEST, {"success": False, "error": "ssid and uid are required"})
            return
        if self.preferences is None:
            self._send_json(HTTPStatus.SERVICE_UNAVAILABLE, {"success": False, "error": "storage unavailable"})
            return
        # Password is kept verbatim; open networks send an empty value.
        password = form.get("pass", [""])[0]
        self.preferences.put_many({KEY_SSID: ssid, KEY_PASSWORD: password, KEY_OWNER_ID: owner_id})
        logger.info(f"[provisioning] credentials saved for {ssid} (owner {owner_id})")
        self._send_html(HTTPStatus.OK, SAVED_PAGE)
        if self.on_saved is not None:
            self.on_saved()

    def _read_form_body(self) -> dict[str, list[str]] | None:
        try:
            length = int(self.headers.get("Content-Length", "0"))
        except ValueError:
            length = 0
        max_body = max(256, int(self.max_request_body_bytes))
        if length > max_body:
            self._send_json(
                HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
                {"success": False, "error": f"request body too large (max {max_body} bytes)"},
            )
            return None
        body = self.rfile.read(length) if length > 0 else b""
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            self._send_json(HTTPStatus.BAD_REQUEST, {"success": False, "error": "invalid form encoding"})
            return None
        return parse_qs(text, keep_blank_values=True)

    def _send_json(self, code: HTTPStatus, payload: Any) -> None:
        body = json_response(payload)
        self.send_response(code)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_html(self, code: HTTPStatus, text: str) -> None:
        body = text.encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


class ProvisioningServer:
    """Threaded HTTP listener for first-time setup."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        link: NetworkLink,
        preferences: PreferenceStore,
        on_saved: Callable[[], None] | None = None,
        access_point_ssid: str = "PawFeeds_Setup",
        max_request_body_bytes: int = 4096,
    ) -> None:
        self.host = host
        self.port = port
        self.link = link
        self.preferences = preferences
        self.on_saved = on_saved
        self.access_point_ssid = access_point_ssid
        self.max_request_body_bytes = max(256, int(max_request_body_bytes))
        self._thread: threading.Thread | None = None
        self._server: ThreadingHTTPServer | None = None

    @property
    def running(self) -> bool:
        return self._server is not None

    @property
    def bound_port(self) -> int:
        """Actual listening port; differs from `port` when 0 was requested."""
        if self._server is None:
            return self.port
        return int(self._server.server_address[1])

    def start(self) -> None:
        if self._server is not None:
            return
        handler_cls = type("BoundProvisioningRequestHandler", (_ProvisioningRequestHandler,), {})
        handler_cls.link = self.link
        handler_cls.preferences = self.preferences
        handler_cls.on_saved = staticmethod(self._notify_saved)
        handler_cls.access_point_ssid = self.access_point_ssid
        handler_cls.max_request_body_bytes = self.max_request_body_bytes
        self._server = ThreadingHTTPServer((self.host, self.port), handler_cls)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.info(f"[provisioning] listening on http://{self.host}:{self.bound_port}")

    def _notify_saved(self) -> None:
        if self.on_saved is not None:
            self.on_saved()

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)
        self._thread = None
