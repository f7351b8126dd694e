"""Named key translation to tmux ``send-keys`` key names."""

import re

# Aliases accepted in response templates -> tmux key name
_KEY_ALIASES = {
    "enter": "Enter",
    "return": "Enter",
    "cr": "Enter",
    "tab": "Tab",
    "s-tab": "BTab",
    "shift-tab": "BTab",
    "btab": "BTab",
    "esc": "Escape",
    "escape": "Escape",
    "space": "Space",
    "up": "Up",
    "down": "Down",
    "left": "Left",
    "right": "Right",
    "bs": "BSpace",
    "bspace": "BSpace",
    "backspace": "BSpace",
    "del": "DC",
    "delete": "DC",
    "home": "Home",
    "end": "End",
    "pageup": "PPage",
    "pgup": "PPage",
    "ppage": "PPage",
    "pagedown": "NPage",
    "pgdn": "NPage",
    "npage": "NPage",
}

_FUNCTION_KEY = re.compile(r"^[fF]([1-9]|1[0-2])$")
_CTRL_KEY = re.compile(r"^[cC]-(.+)$")


def convert_to_tmux_key(name: str) -> str:
    """Map a template key name to tmux's naming convention.

    Unknown names are returned unchanged so tmux can interpret them itself.

    Examples:
        >>> convert_to_tmux_key("S-Tab")
        'BTab'
        >>> convert_to_tmux_key("f5")
        'F5'
        >>> convert_to_tmux_key("c-c")
        'C-c'
    """
    alias = _KEY_ALIASES.get(name.lower())
    if alias:
        return alias

    match = _FUNCTION_KEY.match(name)
    if match:
        return f"F{match.group(1)}"

    match = _CTRL_KEY.match(name)
    if match:
        return f"C-{match.group(1)}"

    return name
