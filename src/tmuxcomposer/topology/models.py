"""Topology 数据模型

控制通道维护的 pane 工作集，以及对外发布的 session 快照 DTO。
"""

import time
from dataclasses import dataclass, field

from tmuxcomposer.core.ids import pane_key


@dataclass
class Pane:
    """工作集中的 pane 记录"""

    pane_id: str  # "%5"
    session_id: str  # "$3"
    window_index: str
    pane_index: str
    window_name: str
    command: str
    width: int
    height: int
    is_active: bool = False
    window_active: bool = False
    has_agent: bool = False
    first_seen: float = field(default_factory=time.monotonic)

    @property
    def key(self) -> str:
        return pane_key(self.session_id, self.window_index, self.pane_index)

    def fingerprint(self) -> str:
        """参与拓扑 hash 的字段"""
        return ":".join([
            self.pane_id,
            self.key,
            self.window_name,
            self.command,
            f"{self.width}x{self.height}",
            str(self.is_active),
            str(self.window_active),
            str(self.has_agent),
        ])


@dataclass(frozen=True)
class WindowRef:
    """window_id -> (session, index) 映射项"""

    session_id: str
    window_index: str


@dataclass
class PaneSnapshot:
    pane_id: str
    pane_index: str
    command: str
    width: int
    height: int
    is_active: bool
    has_agent: bool

    def to_dict(self) -> dict:
        return {
            "paneId": self.pane_id,
            "paneIndex": self.pane_index,
            "command": self.command,
            "width": self.width,
            "height": self.height,
            "isActive": self.is_active,
            "hasAgent": self.has_agent,
        }


@dataclass
class WindowSnapshot:
    window_id: str
    window_index: str
    window_name: str
    is_active: bool
    panes: list[PaneSnapshot] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "windowId": self.window_id,
            "windowIndex": self.window_index,
            "windowName": self.window_name,
            "isActive": self.is_active,
            "panes": [p.to_dict() for p in self.panes],
        }


@dataclass
class SessionSnapshot:
    """``session-changed`` 事件的 details"""

    session_id: str | None
    session_name: str | None
    focused_window_id: str | None = None
    focused_pane_id: str | None = None
    windows: list[WindowSnapshot] = field(default_factory=list)

    def to_dict(self) -> dict:
        """转换为字典（camelCase 字段名）"""
        return {
            "sessionId": self.session_id,
            "sessionName": self.session_name,
            "focusedWindowId": self.focused_window_id,
            "focusedPaneId": self.focused_pane_id,
            "windows": [w.to_dict() for w in self.windows],
        }
