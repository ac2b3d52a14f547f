"""Tests for DownstreamChannel lifecycle and SSE framing."""

import pytest

from core.channels import (
    ChannelClosed,
    ChannelOverflow,
    ChannelState,
    DownstreamChannel,
    encode_comment,
    encode_event,
)


def test_encode_event_framing():
    frame = encode_event("state", {"turn": 1})
    assert frame == b'event: state\ndata: {"turn":1}\n\n'


def test_encode_event_keeps_multiline_text_on_one_data_line():
    frame = encode_event("chat", {"text": "line one\nline two"})
    lines = frame.decode("utf-8").split("\n")
    assert lines[0] == "event: chat"
    assert lines[1].startswith("data: ")
    assert lines[2:] == ["", ""]


def test_encode_event_preserves_unicode():
    frame = encode_event("chat", {"text": "À vous"})
    assert "À vous" in frame.decode("utf-8")


def test_encode_comment():
    assert encode_comment("keepalive") == b": keepalive\n\n"


class TestLifecycle:
    def test_starts_attaching(self):
        assert DownstreamChannel().state is ChannelState.ATTACHING

    def test_activate_then_close(self):
        channel = DownstreamChannel()
        channel.activate()
        assert channel.state is ChannelState.ACTIVE
        channel.close()
        assert channel.state is ChannelState.CLOSED

    def test_closed_is_terminal(self):
        channel = DownstreamChannel()
        channel.close()
        with pytest.raises(ChannelClosed):
            channel.activate()
        assert channel.closed

    def test_close_is_idempotent(self):
        channel = DownstreamChannel()
        channel.close()
        channel.close()
        assert channel.closed

    def test_ids_are_unique(self):
        ids = {DownstreamChannel().channel_id for _ in range(20)}
        assert len(ids) == 20


class TestQueue:
    def test_frames_come_out_in_order(self):
        channel = DownstreamChannel()
        for i in range(3):
            channel.send(f"{i}".encode())
        assert [channel.next_frame(timeout=0) for _ in range(3)] == [b"0", b"1", b"2"]

    def test_next_frame_times_out_with_none(self):
        assert DownstreamChannel().next_frame(timeout=0.01) is None

    def test_send_after_close_raises(self):
        channel = DownstreamChannel()
        channel.close()
        with pytest.raises(ChannelClosed):
            channel.send(b"x")

    def test_close_wakes_reader(self):
        channel = DownstreamChannel()
        channel.close()
        with pytest.raises(ChannelClosed):
            channel.next_frame(timeout=1)

    def test_overflow(self):
        channel = DownstreamChannel(max_pending=2)
        channel.send(b"a")
        channel.send(b"b")
        with pytest.raises(ChannelOverflow):
            channel.send(b"c")
        assert channel.pending == 2

    def test_unbounded_send_ignores_limit(self):
        channel = DownstreamChannel(max_pending=2)
        for frame in (b"a", b"b", b"c"):
            channel.send(frame, bounded=False)
        assert channel.pending == 3
        with pytest.raises(ChannelOverflow):
            channel.send(b"d")
