"""Tmux control-mode line decoding.

Turns one raw line of ``tmux -C`` output into a typed notification. Two
query formats are issued by this package and recognised inside
``%begin``/``%end`` reply blocks:

- full pane descriptor (``PANE ...``), see ``PANE_FORMAT``
- liveness probe reply (``CHECK ...``), see ``PROBE_FORMAT``
"""

import re
from dataclasses import dataclass

PANE_FORMAT = (
    "PANE #{pane_id} #{session_id}:#{window_index}.#{pane_index} #{window_name} "
    "#{pane_current_command} #{pane_width}x#{pane_height} #{window_id} "
    "#{pane_active} #{window_active}"
)
PROBE_FORMAT = "CHECK #{pane_id} #{pane_current_command}"

_PANE_LINE = re.compile(
    r"^PANE (%\d+) ([^:]+):(\d+)\.(\d+) (.*) (\S+) (\d+)x(\d+) (@\d+) ([01]) ([01])$"
)
_PROBE_LINE = re.compile(r"^CHECK (%\d+) ?(.*)$")
_LAYOUT_SIZE = re.compile(r",(\d+)x(\d+),")


def list_panes_command(session: str) -> str:
    """Full-topology query scoped to one session."""
    return f"list-panes -s -t '{session}' -F \"{PANE_FORMAT}\""


def probe_command(session: str) -> str:
    """Liveness probe query scoped to one session."""
    return f"list-panes -s -t '{session}' -F \"{PROBE_FORMAT}\""


@dataclass(frozen=True)
class ReplyBegin:
    command_number: str = ""


@dataclass(frozen=True)
class ReplyEnd:
    error: bool = False


@dataclass(frozen=True)
class PaneDescriptor:
    pane_id: str
    session_id: str
    window_index: str
    pane_index: str
    window_name: str
    command: str
    width: int
    height: int
    window_id: str
    pane_active: bool
    window_active: bool


@dataclass(frozen=True)
class ProbeReply:
    pane_id: str
    command: str


@dataclass(frozen=True)
class WindowAdd:
    window_id: str


@dataclass(frozen=True)
class WindowClose:
    window_id: str


@dataclass(frozen=True)
class WindowRenamed:
    window_id: str
    name: str


@dataclass(frozen=True)
class LayoutChange:
    window_id: str
    layout: str
    width: int | None = None
    height: int | None = None


@dataclass(frozen=True)
class SessionWindowChanged:
    session_id: str
    window_id: str


@dataclass(frozen=True)
class WindowPaneChanged:
    window_id: str
    pane_id: str


@dataclass(frozen=True)
class SessionChanged:
    session_id: str
    name: str


@dataclass(frozen=True)
class SessionsChanged:
    pass


@dataclass(frozen=True)
class Exit:
    reason: str = ""


Notification = (
    ReplyBegin | ReplyEnd | PaneDescriptor | ProbeReply | WindowAdd | WindowClose
    | WindowRenamed | LayoutChange | SessionWindowChanged | WindowPaneChanged
    | SessionChanged | SessionsChanged | Exit
)


def parse_layout_size(layout: str) -> tuple[int, int] | None:
    """Extract the window size from a tmux layout string.

    Example:
        >>> parse_layout_size("b25d,80x24,0,0,2")
        (80, 24)
    """
    match = _LAYOUT_SIZE.search(layout)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def parse_pane_line(line: str) -> PaneDescriptor | None:
    match = _PANE_LINE.match(line)
    if not match:
        return None
    (pane_id, session_id, window_index, pane_index, window_name,
     command, width, height, window_id, pane_active, window_active) = match.groups()
    return PaneDescriptor(
        pane_id=pane_id,
        session_id=session_id,
        window_index=window_index,
        pane_index=pane_index,
        window_name=window_name.strip(),
        command=command,
        width=int(width),
        height=int(height),
        window_id=window_id,
        pane_active=pane_active == "1",
        window_active=window_active == "1",
    )


def parse_probe_line(line: str) -> ProbeReply | None:
    match = _PROBE_LINE.match(line)
    if not match:
        return None
    return ProbeReply(pane_id=match.group(1), command=match.group(2).strip())


def _arg(parts: list[str], index: int) -> str:
    return parts[index] if len(parts) > index else ""


def decode_line(line: str, in_reply: bool) -> Notification | None:
    """Decode one control-mode line.

    Args:
        line: Raw line without the trailing newline
        in_reply: Whether the line sits inside a ``%begin``/``%end`` block

    Returns:
        A notification, or None for lines that carry nothing we track
        (``%output``, unknown verbs, unrecognised reply lines).
    """
    if in_reply:
        if line.startswith("%end") or line.startswith("%error"):
            return ReplyEnd(error=line.startswith("%error"))
        if line.startswith("PANE "):
            return parse_pane_line(line)
        if line.startswith("CHECK "):
            return parse_probe_line(line)
        return None

    if not line.startswith("%"):
        return None

    parts = line.split(" ")
    verb = parts[0]

    if verb == "%begin":
        return ReplyBegin(command_number=_arg(parts, 2))
    if verb in ("%end", "%error"):
        # Stray terminator outside a block; treat as end of reply
        return ReplyEnd(error=verb == "%error")
    if verb == "%window-add":
        return WindowAdd(window_id=_arg(parts, 1))
    if verb in ("%window-close", "%unlinked-window-close"):
        return WindowClose(window_id=_arg(parts, 1))
    if verb == "%window-renamed":
        return WindowRenamed(window_id=_arg(parts, 1), name=" ".join(parts[2:]))
    if verb == "%layout-change":
        layout = _arg(parts, 2)
        size = parse_layout_size(layout)
        if size is None:
            return LayoutChange(window_id=_arg(parts, 1), layout=layout)
        return LayoutChange(window_id=_arg(parts, 1), layout=layout, width=size[0], height=size[1])
    if verb == "%session-window-changed":
        return SessionWindowChanged(session_id=_arg(parts, 1), window_id=_arg(parts, 2))
    if verb == "%window-pane-changed":
        return WindowPaneChanged(window_id=_arg(parts, 1), pane_id=_arg(parts, 2))
    if verb == "%session-changed":
        return SessionChanged(session_id=_arg(parts, 1), name=" ".join(parts[2:]))
    if verb == "%sessions-changed":
        return SessionsChanged()
    if verb == "%exit":
        return Exit(reason=" ".join(parts[1:]))

    return None
