"""Upstream subscriber: MJ event stream -> relay core."""

from __future__ import annotations

import json
from typing import Any, Optional

from core.relay import EVENT_KINDS, RelayCore
from services.mj.sse_client import MJEventSSEClient, SSEEvent
from shared.logging.logger import get_logger

log = get_logger("mj.subscriber")

_MALFORMED = object()


class UpstreamSubscriber:
    """
    Owns the single upstream subscription for one player relay.

    Each recognised event (state / chat / turn) is JSON-decoded and handed to
    the relay exactly once. A malformed event is logged and dropped; it never
    ends the subscription. Connection failures are the transport's concern
    (MJEventSSEClient reconnects on its own).
    """

    def __init__(
        self,
        relay: RelayCore,
        client: MJEventSSEClient,
        *,
        label: str = "mj",
    ) -> None:
        self.relay = relay
        self.client = client
        self.label = label

        self.relayed = 0
        self.dropped = 0

    @property
    def connected(self) -> bool:
        return self.client.connected

    async def run(self) -> None:
        log.info(f"[{self.label}] subscribing to {self.client.url}")
        try:
            async for event in self.client.iter_events():
                self.handle_event(event)
        finally:
            log.info(f"[{self.label}] upstream subscription stopped")

    def handle_event(self, event: SSEEvent) -> bool:
        """Decode and forward a single frame. Returns True if it reached the relay."""
        if event.event not in EVENT_KINDS:
            log.debug(f"[{self.label}] ignoring upstream event '{event.event}'")
            return False

        payload = self._decode(event)
        if payload is _MALFORMED:
            self.dropped += 1
            return False

        try:
            self.relay.on_upstream_event(event.event, payload)
        except Exception:
            self.dropped += 1
            log.exception(f"[{self.label}] relay failed on '{event.event}' event")
            return False

        self.relayed += 1
        return True

    def _decode(self, event: SSEEvent) -> Any:
        try:
            return json.loads(event.data)
        except (TypeError, ValueError) as e:
            preview: Optional[str] = (event.data or "")[:200]
            log.warning(
                f"[{self.label}] dropping malformed '{event.event}' event ({e}): {preview!r}"
            )
            return _MALFORMED

    def stats(self) -> dict:
        return {
            "connected": self.connected,
            "relayed": self.relayed,
            "dropped": self.dropped,
        }

    async def aclose(self) -> None:
        await self.client.aclose()


__all__ = ["UpstreamSubscriber"]
