"""Tmux adapter for tmuxcomposer."""

from .client import TmuxClient, make_target
from .keys import convert_to_tmux_key
from .socket import SocketOptions

__all__ = ["TmuxClient", "SocketOptions", "convert_to_tmux_key", "make_target"]
