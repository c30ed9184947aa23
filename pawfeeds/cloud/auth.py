"""Bearer-token session shared by the cloud clients."""

from __future__ import annotations

from pathlib import Path

from loguru import logger


class CloudAuthSession:
    """Supplies the access token used on every cloud request.

    Token minting and refresh happen outside the device runtime: the token is
    either configured directly or read from a file that an external refresher
    keeps current.
    """

    def __init__(self, *, token: str = "", token_file: str = "") -> None:
        self._static_token = str(token or "").strip()
        self._token_file = Path(token_file).expanduser() if str(token_file or "").strip() else None
        self._last_error = ""

    def token(self) -> str:
        if self._token_file is not None:
            try:
                text = self._token_file.read_text(encoding="utf-8").strip()
            except OSError as e:
                if str(e) != self._last_error:
                    logger.warning(f"[auth] token file unreadable: {e}")
                self._last_error = str(e)
                return self._static_token
            self._last_error = ""
            if text:
                return text
        return self._static_token

    def ready(self) -> bool:
        """True when a token is available for requests."""
        return bool(self.token())

    def headers(self) -> dict[str, str]:
        return auth_headers(self.token())

    def status_snapshot(self) -> dict[str, object]:
        return {
            "ready": self.ready(),
            "source": "file" if self._token_file is not None else "static",
            "last_error": self._last_error,
        }


def auth_headers(token: str) -> dict[str, str]:
    text = str(token or "").strip()
    if not text:
        return {}
    return {"Authorization": f"Bearer {text}"}
