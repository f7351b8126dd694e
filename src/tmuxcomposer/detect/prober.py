"""Liveness Prober - 通过控制通道周期探测 agent 进程

节奏:
- 任一 pane 的 first_seen 在 PROBE_RECENT_WINDOW 内 -> PROBE_FAST_INTERVAL
- 否则 -> PROBE_SLOW_INTERVAL
- 初始拓扑还未发布时跳过；上一条探测未回复时跳过（超时后放弃）

探测结果只在 has_agent 发生变化时触发一次快照重发。
"""

import time
from typing import Awaitable, Callable

from tmuxcomposer import config
from tmuxcomposer.config import METRICS_ENABLED
from tmuxcomposer.control.protocol import probe_command
from tmuxcomposer.errors import ChannelClosedError
from tmuxcomposer.telemetry import get_logger, metrics
from tmuxcomposer.timer import Timer
from tmuxcomposer.topology.store import TopologyStore

from .base import AgentDetector

logger = get_logger(__name__)

PROBE_TASK = "liveness-probe"

Writer = Callable[[str], Awaitable[None]]


class LivenessProber(AgentDetector):
    """控制通道内联查询策略"""

    name = "control"

    def __init__(
        self,
        store: TopologyStore,
        write: Writer,
        timer: Timer,
        agent_command: str | None = None,
        fast_interval: float | None = None,
        slow_interval: float | None = None,
        recent_window: float | None = None,
        reply_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._write = write
        self._timer = timer
        self._agent_command = agent_command or config.AGENT_COMMAND
        self._fast = fast_interval or config.PROBE_FAST_INTERVAL
        self._slow = slow_interval or config.PROBE_SLOW_INTERVAL
        self._recent_window = recent_window or config.PROBE_RECENT_WINDOW
        self._reply_timeout = reply_timeout or config.TMUX_COMMAND_TIMEOUT
        self._clock = clock

        self._pending_since: float | None = None
        self._started = False

    @property
    def is_pending(self) -> bool:
        return self._pending_since is not None

    def current_interval(self) -> float:
        if self._store.has_recent_panes(self._recent_window):
            return self._fast
        return self._slow

    def start(self) -> None:
        if self._started:
            return
        self._timer.register_interval(PROBE_TASK, self.current_interval(), self.refresh)
        self._started = True

    def stop(self) -> None:
        self._timer.unregister_interval(PROBE_TASK)
        self._pending_since = None
        self._started = False

    async def refresh(self) -> None:
        """发起一次探测（由 Timer 周期调用）"""
        self._timer.set_interval(PROBE_TASK, self.current_interval())

        if not self._store.has_emitted or self._store.session_id is None:
            return
        if self._pending_since is not None:
            if self._clock() - self._pending_since < self._reply_timeout:
                return
            logger.warning("[Probe] Previous probe got no reply, re-issuing")

        self._pending_since = self._clock()
        try:
            await self._write(probe_command(self._store.session_id))
        except ChannelClosedError as e:
            self._pending_since = None
            logger.debug(f"[Probe] Skipped, channel closed: {e}")
            return
        if METRICS_ENABLED:
            metrics.inc("probe.sent")

    def on_reply(self, results: dict[str, str]) -> bool:
        """吸收探测回复

        Args:
            results: pane_id -> 前台命令

        Returns:
            是否触发了快照重发
        """
        self._pending_since = None
        agent_ids = {pane_id for pane_id, command in results.items() if command == self._agent_command}
        changed = self._store.apply_probe_results(agent_ids, set(results))
        if changed:
            logger.info(f"[Probe] Agent panes changed: {sorted(agent_ids)}")
            self._store.diff_and_maybe_emit()
        return changed

    def has_agent(self, session: str, window_index: str) -> bool:
        if not self._store.owns(session):
            return False
        return any(pane.has_agent for pane in self._store.get_panes() if pane.window_index == window_index)
