"""
Relay core: single upstream event stream fanned out to N viewer channels.

One RelayCore instance owns the history store and the channel registry and
guards both with a single lock. Upstream events arrive one at a time from the
subscriber (asyncio thread); viewers attach and detach from HTTP handler
threads. Broadcast only enqueues frames, so the lock is never held across
socket I/O.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

from core.channels import ChannelClosed, ChannelOverflow, DownstreamChannel, encode_event
from core.history import DEFAULT_CHAT_CAPACITY, HistoryStore
from shared.logging.logger import get_logger

log = get_logger("core.relay")

EVENT_STATE = "state"
EVENT_CHAT = "chat"
EVENT_TURN = "turn"

EVENT_KINDS = (EVENT_STATE, EVENT_CHAT, EVENT_TURN)


class UnknownEventKind(ValueError):
    """Raised when on_upstream_event() receives a kind with no handler."""


class RelayCore:
    def __init__(
        self,
        history: Optional[HistoryStore] = None,
        *,
        chat_capacity: int = DEFAULT_CHAT_CAPACITY,
        label: str = "relay",
    ) -> None:
        self._history = history if history is not None else HistoryStore(chat_capacity)
        self._label = label
        self._lock = threading.Lock()

        # Keyed by channel identity; insertion order is the broadcast order
        self._channels: Dict[int, DownstreamChannel] = {}

        self._dispatch: Dict[str, Callable[[Any], None]] = {
            EVENT_STATE: self._on_state,
            EVENT_CHAT: self._on_chat,
            EVENT_TURN: self._on_turn,
        }

    # ------------------------------------------------------------------
    # Upstream path
    # ------------------------------------------------------------------

    def on_upstream_event(self, kind: str, payload: Any) -> None:
        handler = self._dispatch.get(kind)
        if handler is None:
            raise UnknownEventKind(f"no handler for upstream event '{kind}'")

        with self._lock:
            handler(payload)

    def _on_state(self, payload: Any) -> None:
        self._history.record_snapshot(payload)
        self._broadcast_locked(EVENT_STATE, payload)

    def _on_chat(self, payload: Any) -> None:
        self._history.append_chat(payload)
        self._broadcast_locked(EVENT_CHAT, payload)

    def _on_turn(self, payload: Any) -> None:
        # Turn notifications are live-only; late joiners wait for the next one
        self._broadcast_locked(EVENT_TURN, payload)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def broadcast(self, kind: str, payload: Any) -> int:
        """Push one event to every registered channel. Returns the delivery count."""
        with self._lock:
            return self._broadcast_locked(kind, payload)

    def _broadcast_locked(self, kind: str, payload: Any) -> int:
        frame = encode_event(kind, payload)
        delivered = 0
        failed: List[DownstreamChannel] = []

        for channel in list(self._channels.values()):
            try:
                channel.send(frame)
                delivered += 1
            except ChannelClosed:
                log.info(f"[{self._label}] {channel!r} closed during broadcast; dropping")
                failed.append(channel)
            except ChannelOverflow as e:
                log.warning(f"[{self._label}] {e}; dropping slow viewer")
                failed.append(channel)
            except Exception as e:
                log.warning(f"[{self._label}] write to {channel!r} failed ({e}); dropping")
                failed.append(channel)

        for channel in failed:
            self._discard_locked(channel)
            channel.close()

        return delivered

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, channel: DownstreamChannel) -> None:
        with self._lock:
            self._register_locked(channel)

    def _register_locked(self, channel: DownstreamChannel) -> None:
        if channel.channel_id in self._channels:
            return
        channel.activate()
        self._channels[channel.channel_id] = channel
        log.info(f"[{self._label}] viewer attached {channel!r} (total={len(self._channels)})")

    def unregister(self, channel: DownstreamChannel) -> None:
        with self._lock:
            self._discard_locked(channel)

    def _discard_locked(self, channel: DownstreamChannel) -> None:
        if self._channels.pop(channel.channel_id, None) is not None:
            log.info(f"[{self._label}] viewer detached {channel!r} (total={len(self._channels)})")

    def attach(self, channel: DownstreamChannel) -> None:
        """
        Replay history into the channel, then register it.

        Both steps happen under the relay lock so no upstream event can land
        between them: an event is either part of the replay or delivered live,
        never both and never neither.
        """
        with self._lock:
            snapshot = self._history.get_snapshot()
            if snapshot is not None:
                channel.send(encode_event(EVENT_STATE, snapshot), bounded=False)
            for message in self._history.get_chat_history():
                channel.send(encode_event(EVENT_CHAT, message), bounded=False)
            self._register_locked(channel)

    def close_all(self) -> int:
        """Close and drop every channel (shutdown). Returns how many were closed."""
        with self._lock:
            channels = list(self._channels.values())
            self._channels.clear()
        for channel in channels:
            channel.close()
        if channels:
            log.info(f"[{self._label}] closed {len(channels)} viewer channel(s)")
        return len(channels)

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def snapshot(self) -> Optional[Any]:
        with self._lock:
            return self._history.get_snapshot()

    def chat_history(self) -> List[Any]:
        with self._lock:
            return self._history.get_chat_history()

    def is_registered(self, channel: DownstreamChannel) -> bool:
        with self._lock:
            return channel.channel_id in self._channels

    @property
    def channel_count(self) -> int:
        with self._lock:
            return len(self._channels)


__all__ = [
    "EVENT_CHAT",
    "EVENT_KINDS",
    "EVENT_STATE",
    "EVENT_TURN",
    "RelayCore",
    "UnknownEventKind",
]
