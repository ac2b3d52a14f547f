"""Shared fixtures for relay tests."""

import os

# Keep test runs from writing per-run log files
os.environ.setdefault("RELAY_LOG_TO_FILE", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import json
from typing import Any, List, Tuple

import pytest

from core.channels import DownstreamChannel
from core.relay import RelayCore


def decode_frame(frame: bytes) -> Tuple[str, Any]:
    """Inverse of encode_event() for a single frame."""
    kind = None
    data = None
    for line in frame.decode("utf-8").split("\n"):
        if line.startswith("event: "):
            kind = line[len("event: "):]
        elif line.startswith("data: "):
            data = json.loads(line[len("data: "):])
    return kind, data


def drain(channel: DownstreamChannel) -> List[Tuple[str, Any]]:
    """Pop every frame currently pending on a channel."""
    out = []
    while True:
        frame = channel.next_frame(timeout=0)
        if frame is None:
            return out
        out.append(decode_frame(frame))


@pytest.fixture
def relay():
    return RelayCore(chat_capacity=200, label="relay test")


@pytest.fixture(name="drain")
def drain_fixture():
    return drain


@pytest.fixture(name="decode_frame")
def decode_frame_fixture():
    return decode_frame
