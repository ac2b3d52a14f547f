"""
Replay history for late-attaching viewers.

Holds the latest full state snapshot (last write wins, never merged) and a
bounded, insertion-ordered buffer of chat messages (drop-oldest). Pure state:
no I/O, no locking. The owning RelayCore serializes every call.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Deque, List, Optional

DEFAULT_CHAT_CAPACITY = 200


class HistoryStore:
    def __init__(self, chat_capacity: int = DEFAULT_CHAT_CAPACITY) -> None:
        capacity = int(chat_capacity)
        if capacity < 1:
            raise ValueError(f"chat_capacity must be >= 1 (got {chat_capacity})")

        self._capacity = capacity
        self._snapshot: Optional[Any] = None
        self._chat: Deque[Any] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def has_snapshot(self) -> bool:
        return self._snapshot is not None

    # ------------------------------------------------------------------

    def get_snapshot(self) -> Optional[Any]:
        """Current snapshot, or None if no state event has arrived yet."""
        return self._snapshot

    def record_snapshot(self, snapshot: Any) -> None:
        self._snapshot = snapshot

    # ------------------------------------------------------------------

    def get_chat_history(self) -> List[Any]:
        return list(self._chat)

    def append_chat(self, message: Any) -> None:
        # deque(maxlen=...) evicts from the left once full
        self._chat.append(message)

    def __len__(self) -> int:
        return len(self._chat)


__all__ = ["DEFAULT_CHAT_CAPACITY", "HistoryStore"]
