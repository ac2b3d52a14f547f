"""Viewer-facing HTTP API for the player relay."""

from .server import RelayApiServer

__all__ = ["RelayApiServer"]
