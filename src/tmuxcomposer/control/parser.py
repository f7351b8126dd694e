"""Control Parser - 控制模式行 -> TopologyStore 更新

职责:
- 跟踪 %begin/%end 回复块状态
- 收集块内的 PANE / CHECK 行，%end 时整体提交
- 把拓扑通知映射为 store 写操作与节流刷新请求
- 协议层面的坏行只记录日志，永不向外抛

块语义:
- 含 PANE 行：完整拓扑查询结果 -> apply_full_snapshot + diff（消费强制标记）
- 含 CHECK 行：存活探测结果 -> on_probe_reply
- 空块：仅在工作集非空时做一次 diff；工作集为空时保留强制标记给下一个完整列表
"""

from typing import Callable

from tmuxcomposer import config
from tmuxcomposer.config import METRICS_ENABLED
from tmuxcomposer.telemetry import get_logger, metrics, truncate
from tmuxcomposer.topology.models import Pane
from tmuxcomposer.topology.store import TopologyStore

from .protocol import (
    Exit,
    LayoutChange,
    PaneDescriptor,
    ProbeReply,
    ReplyBegin,
    ReplyEnd,
    SessionChanged,
    SessionsChanged,
    SessionWindowChanged,
    WindowAdd,
    WindowClose,
    WindowPaneChanged,
    WindowRenamed,
    decode_line,
)

logger = get_logger(__name__)

ProbeReplyCallback = Callable[[dict[str, str]], None]


class ControlParser:
    """控制模式行解析与分发"""

    def __init__(
        self,
        store: TopologyStore,
        request_refresh: Callable[[], None],
        on_probe_reply: ProbeReplyCallback | None = None,
        on_exit: Callable[[str], None] | None = None,
        agent_command: str | None = None,
    ):
        """初始化

        Args:
            store: 拓扑工作集
            request_refresh: 请求一次（节流的）完整拓扑查询
            on_probe_reply: 探测块结束回调，参数 pane_id -> 前台命令
            on_exit: 收到 %exit 时回调
            agent_command: agent 进程名，用于初始化 has_agent
        """
        self._store = store
        self._request_refresh = request_refresh
        self._on_probe_reply = on_probe_reply
        self._on_exit = on_exit
        self._agent_command = agent_command or config.AGENT_COMMAND

        self._in_reply = False
        self._block_panes: list[tuple[Pane, str]] = []
        self._block_probe: dict[str, str] = {}

        self._handlers = {
            ReplyBegin: self._handle_begin,
            ReplyEnd: self._handle_end,
            PaneDescriptor: self._handle_pane,
            ProbeReply: self._handle_probe,
            WindowAdd: self._handle_window_add,
            WindowClose: self._handle_window_close,
            WindowRenamed: self._handle_window_renamed,
            LayoutChange: self._handle_layout_change,
            SessionWindowChanged: self._handle_session_window_changed,
            WindowPaneChanged: self._handle_window_pane_changed,
            SessionChanged: self._handle_session_changed,
            SessionsChanged: self._handle_sessions_changed,
            Exit: self._handle_exit,
        }

    @property
    def in_reply(self) -> bool:
        return self._in_reply

    def reset(self) -> None:
        """断开连接后丢弃未完成的回复块"""
        self._in_reply = False
        self._block_panes = []
        self._block_probe = {}

    def feed(self, line: str) -> None:
        """处理一行控制模式输出"""
        if METRICS_ENABLED:
            metrics.inc("control.lines")
        try:
            note = decode_line(line, self._in_reply)
        except Exception as e:
            logger.warning(f"[Parser] Failed to decode {truncate(line)!r}: {e}")
            return

        if note is None:
            if self._in_reply:
                logger.debug(f"[Parser] Skipping reply line {truncate(line)!r}")
            if METRICS_ENABLED:
                metrics.inc("control.ignored")
            return

        handler = self._handlers.get(type(note))
        if handler is None:
            return
        try:
            handler(note)
        except Exception as e:
            logger.error(f"[Parser] Error handling {truncate(line)!r}: {e}")

    # === 回复块 ===

    def _handle_begin(self, note: ReplyBegin) -> None:
        self._in_reply = True
        self._block_panes = []
        self._block_probe = {}

    def _handle_end(self, note: ReplyEnd) -> None:
        self._in_reply = False
        panes, probe = self._block_panes, self._block_probe
        self._block_panes, self._block_probe = [], {}

        if note.error:
            logger.warning("[Parser] Command reply ended with %error")

        if probe:
            if self._on_probe_reply is not None:
                self._on_probe_reply(probe)
            return

        if panes:
            accepted = self._store.apply_full_snapshot(panes)
            logger.debug(f"[Parser] Full snapshot: {accepted}/{len(panes)} panes accepted")
            self._store.diff_and_maybe_emit(force=self._store.consume_force())
            return

        # 空块（如 attach 自身的回复）不消费 force，留给随后的完整列表
        if self._store.pane_count > 0:
            self._store.diff_and_maybe_emit(force=self._store.consume_force())

    def _handle_pane(self, note: PaneDescriptor) -> None:
        pane = Pane(
            pane_id=note.pane_id,
            session_id=note.session_id,
            window_index=note.window_index,
            pane_index=note.pane_index,
            window_name=note.window_name,
            command=note.command,
            width=note.width,
            height=note.height,
            is_active=note.pane_active,
            window_active=note.window_active,
            has_agent=note.command == self._agent_command,
        )
        self._block_panes.append((pane, note.window_id))

    def _handle_probe(self, note: ProbeReply) -> None:
        self._block_probe[note.pane_id] = note.command

    # === 拓扑通知 ===

    def _handle_window_add(self, note: WindowAdd) -> None:
        if self._store.has_emitted:
            self._request_refresh()

    def _handle_window_close(self, note: WindowClose) -> None:
        removed = self._store.remove_window(note.window_id)
        if removed is not None:
            self._store.emit_snapshot()

    def _handle_window_renamed(self, note: WindowRenamed) -> None:
        if self._store.rename_window(note.window_id, note.name):
            self._store.emit_snapshot()

    def _handle_layout_change(self, note: LayoutChange) -> None:
        if note.width is not None and note.height is not None:
            if self._store.resize_window(note.window_id, note.width, note.height):
                self._store.diff_and_maybe_emit()
        self._request_refresh()

    def _handle_session_window_changed(self, note: SessionWindowChanged) -> None:
        if self._store.owns(note.session_id):
            self._request_refresh()

    def _handle_window_pane_changed(self, note: WindowPaneChanged) -> None:
        if self._store.get_window(note.window_id) is not None:
            self._request_refresh()

    def _handle_session_changed(self, note: SessionChanged) -> None:
        logger.debug(f"[Parser] Client session changed to {note.session_id} ({note.name})")

    def _handle_sessions_changed(self, note: SessionsChanged) -> None:
        self._request_refresh()

    def _handle_exit(self, note: Exit) -> None:
        logger.info(f"[Parser] Control mode exit{': ' + note.reason if note.reason else ''}")
        if self._on_exit is not None:
            self._on_exit(note.reason)
