"""Tmux identifier utilities

tmux uses sigil-prefixed identifiers:
- ``$N``  session id
- ``@N``  window id
- ``%N``  pane id

Windows are addressed as ``session:window_index`` and panes as
``session:window_index.pane_index``.
"""


def normalize_session_id(session_id: str) -> str:
    """Ensure a session id carries the ``$`` sigil.

    Args:
        session_id: "$3" or "3"

    Returns:
        "$3"
    """
    session_id = session_id.strip()
    return session_id if session_id.startswith("$") else f"${session_id}"


def window_key(session: str, window_index: str | int) -> str:
    """Key identifying a window within the tracked session(s).

    Returns:
        Key like "$3:1" or "work:1"
    """
    return f"{session}:{window_index}"


def pane_key(session: str, window_index: str | int, pane_index: str | int) -> str:
    """Display key for a pane, e.g. "$3:1.0"."""
    return f"{session}:{window_index}.{pane_index}"


def index_value(index: str) -> int:
    """Numeric sort value of a tmux window/pane index.

    Non-numeric indexes sort last.
    """
    try:
        return int(index)
    except (TypeError, ValueError):
        return 1 << 30
