"""Terminal host adapters."""

from .tmux import SocketOptions, TmuxClient

__all__ = ["SocketOptions", "TmuxClient"]
