"""Downstream viewer channels and text/event-stream framing."""

from __future__ import annotations

import itertools
import json
import queue
import threading
from enum import Enum
from typing import Any, Optional


class ChannelClosed(Exception):
    """Raised when a frame is offered to a channel that already closed."""


class ChannelOverflow(Exception):
    """Raised when a channel's pending-frame bound is exceeded."""


class ChannelState(str, Enum):
    ATTACHING = "attaching"
    ACTIVE = "active"
    CLOSED = "closed"


def encode_event(kind: str, payload: Any) -> bytes:
    """
    Encode one named event in standard SSE framing.

    json.dumps never emits raw newlines, so the payload always fits on a
    single data: line.
    """
    data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return f"event: {kind}\ndata: {data}\n\n".encode("utf-8")


def encode_comment(text: str = "") -> bytes:
    return f": {text}\n\n".encode("utf-8")


_IDS = itertools.count(1)


class DownstreamChannel:
    """
    One attached viewer.

    Frames offered by the broadcaster are queued here and drained by the
    connection's own writer (the HTTP handler thread), so a slow socket
    never holds up fan-out to other viewers.

    Lifecycle: ATTACHING -> ACTIVE -> CLOSED. CLOSED is terminal.
    """

    DEFAULT_MAX_PENDING = 1000

    def __init__(self, *, label: str = "", max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self.channel_id = next(_IDS)
        self.label = label
        self._max_pending = max(1, int(max_pending))
        self._queue: "queue.Queue[Optional[bytes]]" = queue.Queue()
        self._state = ChannelState.ATTACHING
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        suffix = f" {self.label}" if self.label else ""
        return f"<DownstreamChannel #{self.channel_id}{suffix} {self._state.value}>"

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is ChannelState.CLOSED

    def activate(self) -> None:
        with self._lock:
            if self._state is ChannelState.CLOSED:
                raise ChannelClosed(f"channel #{self.channel_id} is closed")
            self._state = ChannelState.ACTIVE

    def close(self) -> None:
        """Idempotent. Wakes a writer blocked in next_frame()."""
        with self._lock:
            if self._state is ChannelState.CLOSED:
                return
            self._state = ChannelState.CLOSED
        self._queue.put_nowait(None)

    # ------------------------------------------------------------------
    # Producer side (broadcaster / replay)
    # ------------------------------------------------------------------

    def send(self, frame: bytes, *, bounded: bool = True) -> None:
        """Queue a frame. Replay passes bounded=False so history always fits."""
        if self._state is ChannelState.CLOSED:
            raise ChannelClosed(f"channel #{self.channel_id} is closed")
        if bounded and self.pending >= self._max_pending:
            raise ChannelOverflow(
                f"channel #{self.channel_id} has {self._max_pending} frames pending"
            )
        self._queue.put_nowait(frame)

    # ------------------------------------------------------------------
    # Consumer side (connection writer)
    # ------------------------------------------------------------------

    def next_frame(self, timeout: Optional[float] = None) -> Optional[bytes]:
        """
        Block for the next pending frame.

        Returns None on timeout (caller may emit a keepalive) and raises
        ChannelClosed once the channel has been closed.
        """
        if self._state is ChannelState.CLOSED:
            raise ChannelClosed(f"channel #{self.channel_id} is closed")
        try:
            frame = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if frame is None:
            raise ChannelClosed(f"channel #{self.channel_id} is closed")
        return frame

    @property
    def pending(self) -> int:
        return self._queue.qsize()


__all__ = [
    "ChannelClosed",
    "ChannelOverflow",
    "ChannelState",
    "DownstreamChannel",
    "encode_comment",
    "encode_event",
]
