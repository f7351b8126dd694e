"""Session topology working set and snapshots."""

from .models import Pane, PaneSnapshot, SessionSnapshot, WindowRef, WindowSnapshot
from .store import TopologyStore

__all__ = [
    "Pane",
    "PaneSnapshot",
    "SessionSnapshot",
    "TopologyStore",
    "WindowRef",
    "WindowSnapshot",
]
