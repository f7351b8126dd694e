"""Tmux client for subprocess-based tmux interaction."""

import asyncio
import logging

from tmuxcomposer import config

from .socket import SocketOptions

logger = logging.getLogger(__name__)

# Use tab as delimiter to avoid conflicts with spaces/colons in names
_FIELD_SEP = "\t"


def make_target(session: str, window: str | int) -> str:
    """Build a ``session:window`` target string."""
    return f"{session}:{window}"


class TmuxClient:
    """Client for interacting with tmux via one-shot subprocess commands.

    Provides async methods for:
    - Listing sessions, windows, panes and clients
    - Capturing pane content (visible screen or bounded scrollback)
    - Sending literal text, named keys and the paste buffer to a pane
    - Reading session environment and the paste buffer
    """

    def __init__(self, socket: SocketOptions | None = None, timeout: float | None = None):
        """Initialize TmuxClient.

        Args:
            socket: Which tmux server to address. None uses the default server.
            timeout: Per-command timeout in seconds.
        """
        self._socket = socket or SocketOptions()
        self._timeout = timeout or config.TMUX_COMMAND_TIMEOUT

    @property
    def socket(self) -> SocketOptions:
        return self._socket

    async def run(self, *args: str) -> str | None:
        """Execute a tmux command.

        Args:
            *args: Command arguments (e.g., "list-windows", "-F", "...")

        Returns:
            Command stdout on success, None on failure or timeout.
        """
        cmd = ["tmux", *self._socket.args(), *args]

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"tmux subprocess error: {e}")
            return None

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(f"tmux command timed out: {' '.join(cmd)}")
            proc.kill()
            return None

        if proc.returncode != 0:
            logger.warning(f"tmux command failed: {' '.join(cmd)}: {stderr.decode(errors='replace').strip()}")
            return None

        return stdout.decode(errors="replace")

    async def display_message(self, fmt: str, target: str | None = None) -> str | None:
        """Expand a tmux format string, optionally against a target."""
        args = ["display-message", "-p"]
        if target:
            args.extend(["-t", target])
        args.append(fmt)
        output = await self.run(*args)
        return output.strip() if output is not None else None

    async def current_session(self) -> tuple[str, str] | None:
        """Get the (session_id, session_name) of the current client.

        Returns:
            Tuple like ("$3", "work"), or None when not running inside tmux.
        """
        output = await self.display_message(_FIELD_SEP.join(["#{session_id}", "#{session_name}"]))
        if not output:
            return None
        parts = output.split(_FIELD_SEP)
        if len(parts) < 2:
            return None
        return parts[0], parts[1]

    async def list_sessions(self) -> list[str]:
        """List tmux session names."""
        output = await self.run("list-sessions", "-F", "#{session_name}")
        if not output:
            return []
        return [line for line in output.strip().split("\n") if line]

    async def list_windows(self, session: str) -> list[dict]:
        """List windows of a session.

        Returns:
            List of window dicts with keys:
            - window_id: str (e.g., "@3")
            - window_index: str
            - window_name: str
        """
        fmt = _FIELD_SEP.join(["#{window_id}", "#{window_index}", "#{window_name}"])
        output = await self.run("list-windows", "-t", session, "-F", fmt)
        if not output:
            return []

        windows = []
        for line in output.strip().split("\n"):
            parts = line.split(_FIELD_SEP)
            if len(parts) < 3:
                logger.warning(f"Failed to parse window line: {line!r}")
                continue
            windows.append({"window_id": parts[0], "window_index": parts[1], "window_name": parts[2]})
        return windows

    async def list_panes(self, session: str | None = None) -> list[dict]:
        """List panes with their shell pid.

        Args:
            session: Restrict to one session; None lists all sessions.

        Returns:
            List of pane dicts with keys:
            - pane_id: str (e.g., "%0")
            - session_id: str
            - session_name: str
            - window_index: str
            - pane_index: str
            - pane_pid: int
            - command: str (current foreground command)
        """
        fmt = _FIELD_SEP.join([
            "#{pane_id}", "#{session_id}", "#{session_name}",
            "#{window_index}", "#{pane_index}", "#{pane_pid}", "#{pane_current_command}",
        ])
        args = ["list-panes", "-F", fmt]
        args[1:1] = ["-s", "-t", session] if session else ["-a"]
        output = await self.run(*args)
        if not output:
            return []

        panes = []
        for line in output.strip().split("\n"):
            parts = line.split(_FIELD_SEP)
            if len(parts) < 7:
                continue
            try:
                panes.append({
                    "pane_id": parts[0],
                    "session_id": parts[1],
                    "session_name": parts[2],
                    "window_index": parts[3],
                    "pane_index": parts[4],
                    "pane_pid": int(parts[5]),
                    "command": parts[6],
                })
            except ValueError as e:
                logger.warning(f"Failed to parse pane line: {line!r}: {e}")
        return panes

    async def list_clients(self, session: str | None = None) -> list[str]:
        """List ttys of clients attached to a session (or to the server)."""
        args = ["list-clients", "-F", "#{client_tty}"]
        if session:
            args.extend(["-t", session])
        output = await self.run(*args)
        if not output:
            return []
        return [line for line in output.strip().split("\n") if line]

    async def capture_pane(self, target: str, history_lines: int = 0) -> str | None:
        """Capture rendered text from a pane.

        Args:
            target: Pane target (e.g., "work:2" or "%5")
            history_lines: Number of scrollback lines to include above the
                visible screen. 0 captures the visible screen only.

        Returns:
            Pane content string, or None on failure.
        """
        args = ["capture-pane", "-p", "-t", target]
        if history_lines > 0:
            args.extend(["-S", f"-{history_lines}"])
        return await self.run(*args)

    async def send_literal(self, target: str, text: str) -> bool:
        """Type literal text into a pane (no key-name interpretation)."""
        return await self.run("send-keys", "-t", target, "-l", text) is not None

    async def send_key(self, target: str, key: str) -> bool:
        """Send one named key (e.g., "Enter", "BTab") to a pane."""
        return await self.run("send-keys", "-t", target, key) is not None

    async def paste_buffer(self, target: str) -> bool:
        """Paste the top tmux paste buffer into a pane."""
        return await self.run("paste-buffer", "-t", target) is not None

    async def show_buffer(self) -> str | None:
        """Contents of the top paste buffer, or None when there is none."""
        return await self.run("show-buffer")

    async def show_environment(self, session: str, name: str) -> str | None:
        """Read a session environment variable.

        Returns:
            The value, or None when the variable is unset or removed.
        """
        output = await self.run("show-environment", "-t", session, name)
        if not output:
            return None
        line = output.strip()
        # "-NAME" marks a variable removed from the session environment
        if line.startswith("-") or "=" not in line:
            return None
        return line.split("=", 1)[1]

    async def resize_window(self, target: str, width: int, height: int) -> bool:
        """Resize a window to a fixed size."""
        result = await self.run("resize-window", "-t", target, "-x", str(width), "-y", str(height))
        return result is not None
