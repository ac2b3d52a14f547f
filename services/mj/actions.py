"""Player action proxy to the MJ REST endpoints (/join, /chat, /start)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from shared.logging.logger import get_logger

log = get_logger("mj.actions")


class MJActionError(Exception):
    """Raised when the MJ action endpoint cannot be reached at all."""

    def __init__(self, action: str, message: str):
        super().__init__(f"{action}: {message}")
        self.action = action


@dataclass
class ActionResponse:
    """Upstream response, passed back to the caller verbatim."""

    status_code: int
    body: bytes
    content_type: str = "application/json"


class MJActionClient:
    def __init__(
        self,
        base_url: str,
        player_id: str,
        *,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.player_id = player_id
        self.client = client or httpx.Client(
            headers={"Accept": "application/json"},
            timeout=timeout,
        )

    def join(self, name: Optional[str] = None, cls: Optional[str] = None) -> ActionResponse:
        payload = {"playerId": self.player_id, "name": name, "cls": cls}
        return self._post("join", {k: v for k, v in payload.items() if v is not None})

    def chat(self, text: str) -> ActionResponse:
        return self._post("chat", {"playerId": self.player_id, "text": text})

    def start(self) -> ActionResponse:
        return self._post("start", None)

    def _post(self, action: str, payload: Optional[Dict[str, Any]]) -> ActionResponse:
        url = f"{self.base_url}/{action}"
        try:
            if payload is None:
                r = self.client.post(url)
            else:
                r = self.client.post(url, json=payload)
        except (httpx.HTTPError, OSError) as e:
            raise MJActionError(action, f"{url} unreachable ({e!r})") from e

        if r.status_code >= 400:
            log.warning(f"[{self.player_id}] MJ {action} returned [{r.status_code}]")

        return ActionResponse(
            status_code=r.status_code,
            body=r.content,
            content_type=r.headers.get("content-type", "application/json"),
        )

    def close(self) -> None:
        self.client.close()


__all__ = ["ActionResponse", "MJActionClient", "MJActionError"]
