"""Topology Store - 单个 session 的 pane 工作集

职责:
- 维护 pane_id -> Pane 与 window_id -> WindowRef 两张表
- 计算拓扑 hash，仅在变化（或强制）时发布快照
- 拒绝其它 session 的 pane
- 吸收存活探测结果（has_agent 变化才触发重发）

所有写操作都在事件循环线程上执行，不需要加锁。
"""

import hashlib
import time
from typing import Callable

from tmuxcomposer.config import METRICS_ENABLED
from tmuxcomposer.core.ids import index_value, normalize_session_id
from tmuxcomposer.telemetry import get_logger, metrics

from .models import Pane, PaneSnapshot, SessionSnapshot, WindowRef, WindowSnapshot

logger = get_logger(__name__)

SnapshotCallback = Callable[[SessionSnapshot], None]


class TopologyStore:
    """单个 session 的拓扑工作集"""

    def __init__(
        self,
        session_id: str | None = None,
        session_name: str | None = None,
        on_snapshot: SnapshotCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """初始化

        Args:
            session_id: 所属 session id（"$3"），None 表示尚未确定
            session_name: session 名，仅用于快照展示
            on_snapshot: 快照发布回调
            clock: 单调时钟（测试可注入）
        """
        self._session_id = normalize_session_id(session_id) if session_id else None
        self._session_name = session_name
        self._on_snapshot = on_snapshot
        self._clock = clock

        self._panes: dict[str, Pane] = {}
        self._windows: dict[str, WindowRef] = {}
        self._first_seen: dict[str, float] = {}  # 跨 refresh 保留
        self._last_hash: str | None = None
        self._force_next = False
        self._has_emitted = False

    # === 属性 ===

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def session_name(self) -> str | None:
        return self._session_name

    @property
    def has_emitted(self) -> bool:
        """是否已发布过至少一次快照（初始列表已展示）"""
        return self._has_emitted

    @property
    def last_hash(self) -> str | None:
        return self._last_hash

    @property
    def pane_count(self) -> int:
        return len(self._panes)

    def set_session(self, session_id: str, session_name: str | None = None) -> None:
        self._session_id = normalize_session_id(session_id)
        if session_name is not None:
            self._session_name = session_name

    def set_snapshot_callback(self, callback: SnapshotCallback | None) -> None:
        self._on_snapshot = callback

    def get_pane(self, pane_id: str) -> Pane | None:
        return self._panes.get(pane_id)

    def get_panes(self) -> list[Pane]:
        return list(self._panes.values())

    def get_window(self, window_id: str) -> WindowRef | None:
        return self._windows.get(window_id)

    def owns(self, session_id: str) -> bool:
        """session_id 是否属于本 store 跟踪的 session"""
        if self._session_id is None:
            return False
        return normalize_session_id(session_id) == self._session_id

    # === 写操作 ===

    def apply_pane(self, pane: Pane, window_id: str | None = None) -> bool:
        """写入/更新一个 pane

        保留已有记录的 first_seen。

        Returns:
            是否被接受（非本 session 的 pane 被拒绝）
        """
        if not self.owns(pane.session_id):
            if METRICS_ENABLED:
                metrics.inc("topology.foreign_pane")
            logger.debug(f"[Topology] Dropped pane {pane.pane_id} from foreign session {pane.session_id}")
            return False

        pane.first_seen = self._first_seen.setdefault(pane.pane_id, self._clock())

        self._panes[pane.pane_id] = pane
        if window_id:
            self._windows[window_id] = WindowRef(pane.session_id, pane.window_index)
        return True

    def apply_full_snapshot(self, panes: list[tuple[Pane, str]]) -> int:
        """用一次完整查询结果替换工作集

        Args:
            panes: (Pane, window_id) 列表

        Returns:
            被接受的 pane 数量
        """
        self._panes = {}
        self._windows = {}
        accepted = 0
        for pane, window_id in panes:
            if self.apply_pane(pane, window_id):
                accepted += 1
        self._first_seen = {pid: ts for pid, ts in self._first_seen.items() if pid in self._panes}
        return accepted

    def remove_window(self, window_id: str) -> list[str] | None:
        """移除 window 及其所有 pane

        Returns:
            被移除的 pane_id 列表；window 未知或不属于本 session 时返回 None
        """
        ref = self._windows.get(window_id)
        if ref is None or not self.owns(ref.session_id):
            return None

        del self._windows[window_id]
        removed = [
            pane_id for pane_id, pane in self._panes.items()
            if pane.session_id == ref.session_id and pane.window_index == ref.window_index
        ]
        for pane_id in removed:
            del self._panes[pane_id]
            self._first_seen.pop(pane_id, None)
        logger.debug(f"[Topology] Window {window_id} closed, removed {len(removed)} panes")
        return removed

    def rename_window(self, window_id: str, name: str) -> bool:
        """重命名 window 下所有 pane 的 window_name

        Returns:
            window 是否已知且属于本 session
        """
        ref = self._windows.get(window_id)
        if ref is None or not self.owns(ref.session_id):
            return False
        for pane in self._panes.values():
            if pane.session_id == ref.session_id and pane.window_index == ref.window_index:
                pane.window_name = name
        return True

    def resize_window(self, window_id: str, width: int, height: int) -> bool:
        """同步 layout 变化后的窗口尺寸

        Returns:
            是否有 pane 尺寸发生变化
        """
        ref = self._windows.get(window_id)
        if ref is None or not self.owns(ref.session_id):
            return False
        changed = False
        for pane in self._panes.values():
            if pane.session_id != ref.session_id or pane.window_index != ref.window_index:
                continue
            if pane.width != width or pane.height != height:
                pane.width = width
                pane.height = height
                changed = True
        return changed

    def apply_probe_results(self, agent_pane_ids: set[str], seen_pane_ids: set[str] | None = None) -> bool:
        """吸收存活探测结果

        Args:
            agent_pane_ids: 当前前台命令为 agent 的 pane
            seen_pane_ids: 本次探测覆盖到的 pane；None 表示全部

        Returns:
            是否有 pane 的 has_agent 发生变化
        """
        changed = False
        for pane_id, pane in self._panes.items():
            if seen_pane_ids is not None and pane_id not in seen_pane_ids:
                continue
            has_agent = pane_id in agent_pane_ids
            if pane.has_agent != has_agent:
                pane.has_agent = has_agent
                changed = True
        return changed

    def has_recent_panes(self, window: float) -> bool:
        """是否存在 first_seen 在 window 秒内的 pane"""
        now = self._clock()
        return any(now - pane.first_seen < window for pane in self._panes.values())

    def prepare_refresh(self) -> None:
        """丢弃工作集并要求下一次快照强制发布"""
        self._panes.clear()
        self._windows.clear()
        self._force_next = True

    def consume_force(self) -> bool:
        """读取并清除强制发布标记"""
        force = self._force_next
        self._force_next = False
        return force

    def clear(self) -> None:
        """断开连接时清空全部状态"""
        self._panes.clear()
        self._windows.clear()
        self._first_seen.clear()
        self._last_hash = None
        self._force_next = False
        self._has_emitted = False

    # === 快照 ===

    def compute_hash(self) -> str:
        """拓扑 hash：对排序后的 pane 指纹取 md5"""
        data = "|".join(sorted(pane.fingerprint() for pane in self._panes.values()))
        return hashlib.md5(data.encode()).hexdigest()

    def diff_and_maybe_emit(self, force: bool = False) -> bool:
        """hash 变化或强制时发布快照

        Returns:
            是否发布
        """
        current = self.compute_hash()
        if not force and current == self._last_hash:
            if METRICS_ENABLED:
                metrics.inc("topology.unchanged")
            return False
        self.emit_snapshot()
        return True

    def emit_snapshot(self) -> SessionSnapshot:
        """无条件发布当前快照"""
        self._last_hash = self.compute_hash()
        self._has_emitted = True
        snapshot = self.build_snapshot()
        if METRICS_ENABLED:
            metrics.inc("topology.emitted")
            metrics.gauge("topology.panes", len(self._panes))
        if self._on_snapshot is not None:
            try:
                self._on_snapshot(snapshot)
            except Exception as e:
                logger.error(f"[Topology] Snapshot callback failed: {e}")
        return snapshot

    def build_snapshot(self) -> SessionSnapshot:
        """按 window/pane index 排序构造快照"""
        window_ids = {(ref.session_id, ref.window_index): wid for wid, ref in self._windows.items()}
        windows: dict[str, WindowSnapshot] = {}
        focused_window_id: str | None = None
        focused_pane_id: str | None = None

        for pane in self._panes.values():
            window = windows.get(pane.window_index)
            if window is None:
                window_id = window_ids.get((pane.session_id, pane.window_index), "")
                window = WindowSnapshot(
                    window_id=window_id,
                    window_index=pane.window_index,
                    window_name=pane.window_name,
                    is_active=pane.window_active,
                )
                windows[pane.window_index] = window
                if pane.window_active and window_id:
                    focused_window_id = window_id

            if pane.is_active and pane.window_active:
                focused_pane_id = pane.pane_id

            window.panes.append(PaneSnapshot(
                pane_id=pane.pane_id,
                pane_index=pane.pane_index,
                command=pane.command,
                width=pane.width,
                height=pane.height,
                is_active=pane.is_active,
                has_agent=pane.has_agent,
            ))

        ordered = sorted(windows.values(), key=lambda w: index_value(w.window_index))
        for window in ordered:
            window.panes.sort(key=lambda p: index_value(p.pane_index))

        return SessionSnapshot(
            session_id=self._session_id,
            session_name=self._session_name,
            focused_window_id=focused_window_id,
            focused_pane_id=focused_pane_id,
            windows=ordered,
        )
