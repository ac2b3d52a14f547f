"""HTTP API for one player relay: SSE fan-out, state query, action proxy."""

from __future__ import annotations

import json
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlparse

from core.channels import ChannelClosed, ChannelOverflow, DownstreamChannel, encode_comment
from core.relay import RelayCore
from runtime import version
from services.mj.actions import ActionResponse, MJActionClient, MJActionError
from shared.config.relay import ApiConfig
from shared.logging.logger import get_logger

log = get_logger("services.relay_api")


class RelayApiServer:
    def __init__(
        self,
        config: ApiConfig,
        relay: RelayCore,
        actions: MJActionClient,
        *,
        upstream_stats: Optional[Callable[[], Dict[str, Any]]] = None,
    ) -> None:
        self._config = config
        self._relay = relay
        self._actions = actions
        self._upstream_stats = upstream_stats
        self._thread: Optional[threading.Thread] = None
        self._server: Optional[ThreadingHTTPServer] = None

    @property
    def server_address(self) -> Tuple[str, int]:
        if not self._server:
            raise RuntimeError("relay API server is not running")
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return

        handler = self._build_handler()
        self._server = ThreadingHTTPServer(
            (self._config.host, int(self._config.port)),
            handler,
        )
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="relay-api",
            daemon=True,
        )
        self._thread.start()
        host, port = self.server_address
        log.info(
            f"[{self._actions.player_id}] relay API running on http://{host}:{port}"
        )

    def stop(self) -> None:
        if not self._server:
            return
        self._server.shutdown()
        # Wake any /events writers so their connections unwind
        self._relay.close_all()
        self._server.server_close()
        self._server = None
        log.info("Relay API server stopped")

    def _build_handler(self):
        config = self._config
        relay = self._relay
        actions = self._actions
        upstream_stats = self._upstream_stats

        class Handler(BaseHTTPRequestHandler):
            def _send_raw(self, status: int, body: bytes, content_type: str) -> None:
                self.send_response(status)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(body)))
                self._apply_cors()
                self.end_headers()
                self.wfile.write(body)

            def _send_json(self, status: int, payload: Any) -> None:
                body = json.dumps(payload).encode("utf-8")
                self._send_raw(status, body, "application/json")

            def _relay_upstream(self, response: ActionResponse) -> None:
                self._send_raw(response.status_code, response.body, response.content_type)

            def _apply_cors(self) -> None:
                origins = config.allow_origins
                if not origins:
                    return
                origin = self.headers.get("Origin")
                if "*" in origins:
                    self.send_header("Access-Control-Allow-Origin", "*")
                elif origin and origin in origins:
                    self.send_header("Access-Control-Allow-Origin", origin)
                self.send_header("Access-Control-Allow-Headers", "Content-Type")
                self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")

            def do_OPTIONS(self) -> None:  # noqa: N802 - stdlib signature
                self.send_response(HTTPStatus.NO_CONTENT)
                self._apply_cors()
                self.end_headers()

            def do_GET(self) -> None:  # noqa: N802 - stdlib signature
                path = urlparse(self.path).path.rstrip("/") or "/"

                if path == "/events":
                    return self._serve_events()

                if path == "/state":
                    return self._send_json(HTTPStatus.OK, {"snapshot": relay.snapshot()})

                if path == "/health":
                    return self._send_json(
                        HTTPStatus.OK,
                        {
                            "ok": True,
                            "playerId": actions.player_id,
                            "mj": actions.base_url,
                            "version": version.as_dict(),
                            "channels": relay.channel_count,
                            "upstream": upstream_stats() if upstream_stats else None,
                        },
                    )

                self._send_json(HTTPStatus.NOT_FOUND, {"error": "Unknown endpoint"})

            def do_POST(self) -> None:  # noqa: N802 - stdlib signature
                path = urlparse(self.path).path.rstrip("/") or "/"
                payload = self._read_json_body()
                if payload is None:
                    self.close_connection = True
                    return self._send_json(
                        HTTPStatus.BAD_REQUEST,
                        {"error": "invalid Content-Length"},
                    )

                if path == "/join":
                    return self._proxy(
                        "join",
                        lambda: actions.join(name=payload.get("name"), cls=payload.get("cls")),
                    )

                if path == "/say":
                    text = payload.get("text")
                    if not text:
                        return self._send_json(
                            HTTPStatus.BAD_REQUEST,
                            {"error": "text required"},
                        )
                    return self._proxy("say", lambda: actions.chat(text))

                if path == "/start":
                    return self._proxy("start", actions.start)

                self._send_json(HTTPStatus.NOT_FOUND, {"error": "Unknown endpoint"})

            def _read_json_body(self) -> Optional[Dict[str, Any]]:
                """Parsed object body, {} for a non-object body, None for a bad length."""
                try:
                    length = int(self.headers.get("Content-Length") or 0)
                except ValueError:
                    return None
                if length < 0:
                    return None
                if length == 0:
                    return {}
                raw = self.rfile.read(length)
                try:
                    payload = json.loads(raw.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    return {}
                return payload if isinstance(payload, dict) else {}

            def _proxy(self, name: str, call: Callable[[], ActionResponse]) -> None:
                try:
                    response = call()
                except MJActionError as e:
                    log.error(f"[{actions.player_id}] {name} proxy error: {e}")
                    return self._send_json(
                        HTTPStatus.BAD_GATEWAY,
                        {"error": f"{name} proxy error"},
                    )
                self._relay_upstream(response)

            # ----------------------------------------------------------
            # Downstream attachment
            # ----------------------------------------------------------

            def _serve_events(self) -> None:
                self.send_response(HTTPStatus.OK)
                self.send_header("Content-Type", "text/event-stream")
                self.send_header("Cache-Control", "no-cache")
                self.send_header("Connection", "keep-alive")
                self._apply_cors()
                self.end_headers()
                self.close_connection = True

                # Bounds how long one stalled viewer can block its own writer
                self.connection.settimeout(config.write_timeout_seconds)

                channel = DownstreamChannel(
                    label=self.address_string(),
                    max_pending=config.max_pending_frames,
                )
                try:
                    try:
                        relay.attach(channel)
                    except (ChannelClosed, ChannelOverflow) as e:
                        log.warning(f"{channel!r} rejected on attach: {e}")
                        return
                    while True:
                        frame = channel.next_frame(timeout=config.keepalive_seconds)
                        if frame is None:
                            frame = encode_comment("keepalive")
                        self.wfile.write(frame)
                        self.wfile.flush()
                except (ChannelClosed, ChannelOverflow) as e:
                    log.debug(f"{channel!r} ended: {e}")
                except OSError as e:
                    log.info(f"{channel!r} write failed ({e!r}); viewer gone")
                finally:
                    channel.close()
                    relay.unregister(channel)

            def log_message(self, format: str, *args: Any) -> None:
                log.info("%s - %s", self.address_string(), format % args)

        return Handler


__all__ = ["RelayApiServer"]
