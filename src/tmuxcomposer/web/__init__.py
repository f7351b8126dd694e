"""WebSocket event sink."""

from .server import EventServer

__all__ = ["EventServer"]
