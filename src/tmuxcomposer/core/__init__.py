"""Core module - tmux identifier helpers"""

from .ids import index_value, normalize_session_id, pane_key, window_key

__all__ = [
    "normalize_session_id",
    "window_key",
    "pane_key",
    "index_value",
]
