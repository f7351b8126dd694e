"""tmuxcomposer: tmux control-mode watcher and agent prompt automation."""

__version__ = "0.4.0"
