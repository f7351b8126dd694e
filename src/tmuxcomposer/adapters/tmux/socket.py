"""Tmux socket selection.

Resolves which tmux server to talk to: an explicit socket name (``-L``),
an explicit socket path (``-S``), the server of the enclosing ``$TMUX``,
or tmux's default socket.
"""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class SocketOptions:
    """Which tmux server to address."""

    socket_name: str | None = None
    socket_path: str | None = None

    def args(self) -> list[str]:
        """Command-line arguments selecting the socket.

        Returns:
            ``["-L", name]``, ``["-S", path]`` or ``[]`` for the default server.
        """
        if self.socket_name:
            return ["-L", self.socket_name]
        if self.socket_path:
            return ["-S", self.socket_path]
        env_path = socket_path_from_env()
        if env_path:
            return ["-S", env_path]
        return []

    def resolve_path(self) -> str:
        """Filesystem path of the control socket."""
        if self.socket_path:
            return self.socket_path
        if self.socket_name:
            return os.path.join(_socket_dir(), self.socket_name)
        return socket_path_from_env() or os.path.join(_socket_dir(), "default")

    def exists(self) -> bool:
        """Whether the server socket is present on disk."""
        return os.path.exists(self.resolve_path())


def socket_path_from_env() -> str | None:
    """Socket path of the tmux server we are running inside, if any.

    ``$TMUX`` has the form ``<socket path>,<server pid>,<session index>``.
    """
    tmux_env = os.environ.get("TMUX")
    if not tmux_env:
        return None
    return tmux_env.split(",")[0] or None


def _socket_dir() -> str:
    tmpdir = os.environ.get("TMUX_TMPDIR", "/tmp")
    return os.path.join(tmpdir, f"tmux-{os.getuid()}")
