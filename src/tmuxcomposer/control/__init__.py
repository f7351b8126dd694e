"""Tmux control-mode channel: connector, line decoding and parsing."""

from .backoff import ReconnectPolicy
from .connector import ControlConnector
from .parser import ControlParser
from .protocol import decode_line, list_panes_command, probe_command

__all__ = [
    "ControlConnector",
    "ControlParser",
    "ReconnectPolicy",
    "decode_line",
    "list_panes_command",
    "probe_command",
]
