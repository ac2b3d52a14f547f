"""Tests for RelayCore: dispatch, fan-out, registry and replay handoff."""

import threading

import pytest

from core.channels import ChannelState, DownstreamChannel
from core.relay import RelayCore, UnknownEventKind


class ExplodingChannel(DownstreamChannel):
    """Channel whose transport fails on every write."""

    def send(self, frame: bytes, *, bounded: bool = True) -> None:
        raise OSError("broken pipe")


def _attached(relay, **kwargs):
    channel = DownstreamChannel(**kwargs)
    relay.attach(channel)
    return channel


class TestUpstreamDispatch:
    def test_state_updates_snapshot_and_broadcasts(self, relay, drain):
        channel = _attached(relay)
        relay.on_upstream_event("state", {"turn": 1})
        assert relay.snapshot() == {"turn": 1}
        assert drain(channel) == [("state", {"turn": 1})]

    def test_chat_appends_and_broadcasts(self, relay, drain):
        channel = _attached(relay)
        relay.on_upstream_event("chat", {"from": "p2", "text": "hi"})
        assert relay.chat_history() == [{"from": "p2", "text": "hi"}]
        assert drain(channel) == [("chat", {"from": "p2", "text": "hi"})]

    def test_turn_is_relayed_but_not_stored(self, relay, drain):
        channel = _attached(relay)
        relay.on_upstream_event("turn", {"active": "p1"})
        assert drain(channel) == [("turn", {"active": "p1"})]
        assert relay.snapshot() is None
        assert relay.chat_history() == []

    def test_unknown_kind_raises(self, relay):
        with pytest.raises(UnknownEventKind):
            relay.on_upstream_event("bogus", {})

    def test_last_write_wins_over_sequence(self, relay):
        for turn in range(10):
            relay.on_upstream_event("state", {"turn": turn})
        assert relay.snapshot() == {"turn": 9}

    def test_chat_capacity_scenario(self):
        relay = RelayCore(chat_capacity=2)
        for text in ("A", "B", "C"):
            relay.on_upstream_event("chat", text)
        assert relay.chat_history() == ["B", "C"]

    def test_events_work_with_no_viewers(self, relay):
        relay.on_upstream_event("state", {"turn": 3})
        relay.on_upstream_event("turn", {"active": "p2"})
        assert relay.channel_count == 0
        assert relay.snapshot() == {"turn": 3}


class TestFanOut:
    def test_every_channel_gets_every_event_in_order(self, relay, drain):
        channels = [_attached(relay) for _ in range(3)]
        relay.on_upstream_event("state", {"turn": 1})
        relay.on_upstream_event("chat", "hello")
        relay.on_upstream_event("turn", {"active": "p1"})

        expected = [("state", {"turn": 1}), ("chat", "hello"), ("turn", {"active": "p1"})]
        for channel in channels:
            assert drain(channel) == expected

    def test_failed_channel_is_dropped_and_others_still_delivered(self, relay, drain):
        before = _attached(relay)
        broken = ExplodingChannel()
        relay.register(broken)
        after = _attached(relay)

        delivered = relay.broadcast("turn", {"active": "p2"})

        assert delivered == 2
        assert not relay.is_registered(broken)
        assert broken.state is ChannelState.CLOSED
        assert drain(before) == [("turn", {"active": "p2"})]
        assert drain(after) == [("turn", {"active": "p2"})]

        relay.broadcast("turn", {"active": "p3"})
        assert relay.channel_count == 2

    def test_overflowing_channel_is_dropped(self, relay, drain):
        slow = _attached(relay, max_pending=1)
        fast = _attached(relay)
        relay.on_upstream_event("chat", "one")
        relay.on_upstream_event("chat", "two")

        assert not relay.is_registered(slow)
        assert relay.is_registered(fast)
        assert drain(fast) == [("chat", "one"), ("chat", "two")]

    def test_closed_channel_is_dropped_on_next_broadcast(self, relay):
        channel = _attached(relay)
        channel.close()
        relay.broadcast("turn", {})
        assert relay.channel_count == 0


class TestRegistry:
    def test_register_is_idempotent(self, relay, drain):
        channel = DownstreamChannel()
        relay.register(channel)
        relay.register(channel)
        assert relay.channel_count == 1

        relay.broadcast("chat", "once")
        assert drain(channel) == [("chat", "once")]

    def test_register_activates(self, relay):
        channel = DownstreamChannel()
        relay.register(channel)
        assert channel.state is ChannelState.ACTIVE

    def test_unregister_non_member_is_noop(self, relay, drain):
        member = _attached(relay)
        stranger = DownstreamChannel()

        relay.unregister(stranger)
        relay.unregister(stranger)

        assert relay.channel_count == 1
        relay.broadcast("chat", "still here")
        assert drain(member) == [("chat", "still here")]

    def test_unregister_twice_is_noop(self, relay):
        a = _attached(relay)
        b = _attached(relay)
        relay.unregister(a)
        relay.unregister(a)
        assert relay.channel_count == 1
        assert relay.is_registered(b)

    def test_close_all(self, relay):
        channels = [_attached(relay) for _ in range(3)]
        assert relay.close_all() == 3
        assert relay.channel_count == 0
        assert all(c.closed for c in channels)


class TestReplayOnAttach:
    def test_replays_snapshot_then_chat_in_order(self, relay, drain):
        relay.on_upstream_event("chat", "m1")
        relay.on_upstream_event("state", {"turn": 4})
        relay.on_upstream_event("chat", "m2")

        channel = _attached(relay)
        relay.on_upstream_event("turn", {"active": "p1"})

        assert drain(channel) == [
            ("state", {"turn": 4}),
            ("chat", "m1"),
            ("chat", "m2"),
            ("turn", {"active": "p1"}),
        ]

    def test_late_viewer_gets_only_snapshot(self, relay, drain):
        relay.on_upstream_event("state", {"turn": 1})
        channel = _attached(relay)
        assert drain(channel) == [("state", {"turn": 1})]

    def test_nothing_replayed_on_empty_history(self, relay, drain):
        channel = _attached(relay)
        assert drain(channel) == []
        assert channel.state is ChannelState.ACTIVE

    def test_turn_is_not_replayed(self, relay, drain):
        relay.on_upstream_event("turn", {"active": "p2"})
        channel = _attached(relay)
        assert drain(channel) == []

    def test_null_snapshot_is_not_replayed(self, relay, drain):
        relay.on_upstream_event("state", {"turn": 1})
        relay.on_upstream_event("state", None)
        channel = _attached(relay)
        assert drain(channel) == []

    def test_replay_larger_than_pending_limit_still_registers(self, drain):
        relay = RelayCore(chat_capacity=200)
        relay.on_upstream_event("state", {"turn": 1})
        for i in range(50):
            relay.on_upstream_event("chat", i)

        channel = _attached(relay, max_pending=10)

        assert relay.is_registered(channel)
        events = drain(channel)
        assert len(events) == 51
        assert events[0] == ("state", {"turn": 1})
        assert events[-1] == ("chat", 49)

    def test_replay_is_atomic_with_concurrent_broadcasts(self):
        relay = RelayCore(chat_capacity=10_000)
        total = 2000
        stop = threading.Event()

        def produce():
            for i in range(total):
                relay.on_upstream_event("chat", i)
            stop.set()

        producer = threading.Thread(target=produce)
        producer.start()

        channels = []
        while not stop.is_set():
            channel = DownstreamChannel(max_pending=20_000)
            relay.attach(channel)
            channels.append(channel)
        producer.join()

        for channel in channels:
            seen = []
            while True:
                frame = channel.next_frame(timeout=0)
                if frame is None:
                    break
                seen.append(frame)
            # Replay + live must be exactly 0..total-1: no gaps, no duplicates
            assert len(seen) == total
            assert seen == [f"event: chat\ndata: {i}\n\n".encode() for i in range(total)]
