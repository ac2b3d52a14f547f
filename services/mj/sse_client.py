import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional

import httpx

from shared.logging.logger import get_logger

log = get_logger("mj.sse")

DEFAULT_RETRY_SECONDS = 3.0


@dataclass
class SSEEvent:
    """
    Lightweight container for SSE frames.

    The MJ server emits named events (state / chat / turn) using standard
    Server-Sent Events framing; data is left undecoded here.
    """

    event: str
    data: str
    event_id: Optional[str] = None


class MJEventSSEClient:
    """
    Long-lived SSE client for the MJ event stream.

    Rules:
    - Connects to {base_url}/events and yields decoded SSEEvent objects
    - Reconnects forever after a fixed delay (server `retry:` overrides it),
      the way a browser EventSource does; there is no exponential backoff
    - Reuses Last-Event-ID across reconnects when the server provides one
    - Never raises to the caller except on cancellation
    """

    EVENTS_PATH = "/events"

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
        retry_seconds: float = DEFAULT_RETRY_SECONDS,
        connect_timeout: float = 10.0,
        label: str = "mj",
    ):
        self.base_url = base_url.rstrip("/")
        self.label = label

        base_headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }
        if headers:
            base_headers.update(headers)
        self._base_headers = base_headers

        # Allow caller to supply a shared client; otherwise own lifecycle
        self._client = client or httpx.AsyncClient(
            headers=self._base_headers,
            timeout=httpx.Timeout(connect_timeout, read=None),
            follow_redirects=True,
        )
        self._client_owned = client is None

        self._retry_seconds = max(0.0, float(retry_seconds))
        self._closed = False
        self._connected = False
        self._last_event_id: Optional[str] = None
        self.error_count = 0

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.EVENTS_PATH}"

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def retry_seconds(self) -> float:
        return self._retry_seconds

    # ------------------------------------------------------------------

    async def iter_events(self) -> AsyncIterator[SSEEvent]:
        """
        Connect to the event stream and yield parsed frames.

        Every failure (connect error, bad status, wrong content type, read
        error, server closing the stream) is logged and followed by a
        reconnect after retry_seconds. Callers cancel or aclose() to stop.
        """
        url = self.url

        while not self._closed:
            headers = dict(self._base_headers)
            if self._last_event_id:
                headers["Last-Event-ID"] = self._last_event_id

            try:
                async with self._client.stream("GET", url, headers=headers) as resp:
                    ct = resp.headers.get("content-type")
                    status = resp.status_code

                    if status != 200 or (ct and "text/event-stream" not in ct):
                        body_preview = ""
                        try:
                            raw = await resp.aread()
                            body_preview = raw.decode(errors="ignore")[:500]
                        except httpx.HTTPError:
                            body_preview = "<unreadable>"

                        self._record_error(
                            f"connection refused [{status}] content-type={ct} body={body_preview}"
                        )
                    else:
                        self._connected = True
                        log.info(f"[{self.label}] connected to MJ events ({url})")

                        async for event in self._read_stream(resp):
                            if event.event_id:
                                self._last_event_id = event.event_id
                            yield event

                        if not self._closed:
                            self._record_error("stream closed by server")

            except asyncio.CancelledError:
                raise

            except Exception as e:
                self._record_error(f"stream error: {e!r}")

            finally:
                self._connected = False

            if self._closed:
                break

            log.debug(f"[{self.label}] reconnecting in {self._retry_seconds:.1f}s")
            await asyncio.sleep(self._retry_seconds)

    def _record_error(self, reason: str) -> None:
        self.error_count += 1
        log.warning(
            f"[{self.label}] MJ events error (attempt={self.error_count}): {reason}"
        )

    # ------------------------------------------------------------------

    async def _read_stream(self, resp: httpx.Response) -> AsyncIterator[SSEEvent]:
        """
        Parse a single HTTP response body into SSEEvent objects.
        """
        data_lines: List[str] = []
        event_name: Optional[str] = None
        event_id: Optional[str] = None

        async for raw_line in resp.aiter_lines():
            if self._closed:
                break

            line = raw_line.lstrip("\ufeff").rstrip("\r")

            # Empty line signals dispatch
            if line == "":
                if data_lines:
                    yield SSEEvent(
                        event=event_name or "message",
                        data="\n".join(data_lines),
                        event_id=event_id or self._last_event_id,
                    )

                data_lines = []
                event_name = None
                event_id = None
                continue

            # Comments/keepalives begin with ':'
            if line.startswith(":"):
                continue

            field, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]

            if field == "data":
                data_lines.append(value)
            elif field == "event":
                event_name = value.strip() or event_name
            elif field == "id":
                event_id = value.strip() or event_id
            elif field == "retry":
                retry = value.strip()
                if retry.isascii() and retry.isdigit():
                    self._retry_seconds = max(0.0, int(retry) / 1000.0)
                else:
                    log.debug(f"[{self.label}] ignoring invalid retry field: {value!r}")

            # Unknown field → ignore but keep accumulating data_lines

        # Flush any trailing data when the stream closes without a blank line
        if data_lines:
            yield SSEEvent(
                event=event_name or "message",
                data="\n".join(data_lines),
                event_id=event_id or self._last_event_id,
            )

    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        self._closed = True

        if self._client_owned:
            await self._client.aclose()
