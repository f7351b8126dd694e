"""Automator - 周期采样所有 session 的 window 并驱动 MatcherEngine

一次 poll:
1. socket 不存在 -> 记录断开并清空全部缓存，直接返回
2. 刷新 agent 探测缓存
3. 遍历 session：有 client attach 视为人工控制，跳过；控制权变化发 session-control
   事件，交还自动化时把所有 window 重设为 80x24
4. 同一 session 的 window 并发处理（asyncio.gather）
5. 内容变化发 window-content；agent 在且内容变化（或首次发现 agent）时求值规则

登录失效（SessionInvalidatedError）从 poll_once 向外传播，run() 以 EXIT_SESSION_INVALID 退出。
"""

import asyncio
from typing import Mapping

from tmuxcomposer import config
from tmuxcomposer.adapters.tmux.client import TmuxClient, make_target
from tmuxcomposer.config import METRICS_ENABLED
from tmuxcomposer.core.ids import window_key
from tmuxcomposer.detect.base import AgentDetector
from tmuxcomposer.errors import SessionInvalidatedError
from tmuxcomposer.events import (
    SESSION_CONTROL,
    SESSION_INVALIDATED,
    WINDOW_AUTOMATION,
    WINDOW_CONTENT,
    EventEmitter,
)
from tmuxcomposer.telemetry import format_target_log, get_logger, metrics
from tmuxcomposer.timer import Timer

from .cleaner import ContentCleaner
from .keys import KeySender
from .matcher import MatchContext, MatcherEngine, TriggerRule
from .sampler import ScreenSampler

logger = get_logger(__name__)

POLL_TASK = "automation-poll"


class Automator:
    """跨 session 的屏幕自动化"""

    def __init__(
        self,
        client: TmuxClient,
        emitter: EventEmitter,
        rules: list[TriggerRule],
        detector: AgentDetector,
        skip: Mapping[str, bool] | None = None,
        poll_interval: float | None = None,
        emit_content: bool = True,
        sampler: ScreenSampler | None = None,
        sender: KeySender | None = None,
    ):
        self._client = client
        self._emitter = emitter
        self._detector = detector
        self._poll_interval = poll_interval or config.POLL_INTERVAL
        self._emit_content = emit_content
        self._sampler = sampler or ScreenSampler(client)
        self._engine = MatcherEngine(rules, sender or KeySender(client), skip=skip)

        self._socket_present: bool | None = None
        self._human_control: dict[str, bool] = {}
        self._agent_seen: set[str] = set()
        self._known_windows: dict[str, set[str]] = {}
        self._timer: Timer | None = None
        self._fatal: SessionInvalidatedError | None = None
        self._done = asyncio.Event()

    @property
    def engine(self) -> MatcherEngine:
        return self._engine

    @property
    def sampler(self) -> ScreenSampler:
        return self._sampler

    # === 生命周期 ===

    async def run(self) -> int:
        """运行直到 stop() 或致命错误

        Returns:
            进程退出码
        """
        self._timer = Timer()
        self._timer.register_interval(POLL_TASK, self._poll_interval, self._poll_guarded)
        timer_task = asyncio.create_task(self._timer.run())
        logger.info(f"[Automator] Polling every {self._poll_interval}s with {len(self._engine.rules)} rules")
        try:
            await self._done.wait()
        finally:
            self._timer.stop()
            timer_task.cancel()
            try:
                await timer_task
            except asyncio.CancelledError:
                pass

        if self._fatal is not None:
            return config.EXIT_SESSION_INVALID
        return config.EXIT_OK

    def stop(self) -> None:
        self._done.set()

    async def _poll_guarded(self) -> None:
        try:
            await self.poll_once()
        except SessionInvalidatedError as e:
            self._fatal = e
            logger.critical(f"[Automator] {e}")
            self._emitter.emit(SESSION_INVALIDATED, {
                "sessionName": e.session,
                "windowIndex": e.window,
                "marker": e.marker,
            })
            self.stop()

    # === 单次 poll ===

    async def poll_once(self) -> None:
        """执行一次完整采样

        Raises:
            SessionInvalidatedError: 任一 window 出现登录失效标记
        """
        if not self._check_socket():
            return

        try:
            await self._detector.refresh()
        except Exception as e:
            logger.error(f"[Automator] Agent detection failed: {e}")
            self._emitter.emit_error("Error finding agent processes", e)

        sessions = await self._client.list_sessions()
        if sessions:
            for session in set(self._known_windows) - set(sessions):
                self._forget_closed_windows(session, set())

        for session in sessions:
            if await self._update_control_state(session):
                continue

            windows = await self._client.list_windows(session)
            if windows:
                self._forget_closed_windows(session, {w["window_index"] for w in windows})
            mode = await self._client.show_environment(session, config.MODE_ENV_VAR)
            await asyncio.gather(*(self._process_window(session, window, mode) for window in windows))

    def _check_socket(self) -> bool:
        """跟踪 socket 存在性；断开时清空所有状态"""
        present = self._client.socket.exists()
        if present != self._socket_present:
            if not present:
                if self._socket_present:
                    logger.info("[Automator] Tmux server disconnected, waiting for reconnection...")
                    self.reset()
                else:
                    logger.info("[Automator] Waiting for tmux socket...")
            elif self._socket_present is not None:
                logger.info("[Automator] Tmux socket detected")
            self._socket_present = present
        return present

    def reset(self) -> None:
        """丢弃执行记录、checksum、agent 缓存和控制权状态"""
        self._engine.records.clear()
        self._sampler.clear()
        self._agent_seen.clear()
        self._human_control.clear()
        self._known_windows.clear()

    def _forget_closed_windows(self, session: str, current: set[str]) -> None:
        """丢弃已关闭 window 的执行记录、checksum 和 agent 状态

        同 index 上新开的 window 会重新求值全部规则。current 为空表示整个 session 已消失
        （list-windows 返回空列表视为查询失败，不会走到这里）。
        """
        for index in self._known_windows.get(session, set()) - current:
            self._engine.records.forget_window(session, index)
            self._sampler.forget(session, index)
            self._agent_seen.discard(window_key(session, index))
            logger.debug(format_target_log("Automator", make_target(session, index), "Window closed, state dropped"))
        if current:
            self._known_windows[session] = current
        else:
            self._known_windows.pop(session, None)

    async def _update_control_state(self, session: str) -> bool:
        """Returns:
            session 当前是否由人工控制
        """
        is_human = bool(await self._client.list_clients(session))
        was_human = self._human_control.get(session, False)
        if is_human != was_human:
            self._human_control[session] = is_human
            logger.info(f"[Automator] Session {session} is now {'human' if is_human else 'automation'} controlled")
            self._emitter.emit(SESSION_CONTROL, {"sessionName": session, "isHumanControlled": is_human})
            if was_human and not is_human:
                await self._resize_session_windows(session)
        return is_human

    async def _resize_session_windows(self, session: str) -> None:
        windows = await self._client.list_windows(session)
        results = await asyncio.gather(*(
            self._client.resize_window(
                make_target(session, w["window_index"]),
                config.DEFAULT_TERMINAL_WIDTH,
                config.DEFAULT_TERMINAL_HEIGHT,
            )
            for w in windows
        ))
        for window, ok in zip(windows, results):
            if not ok:
                self._emitter.emit_error(f"Failed to resize {make_target(session, window['window_index'])}")

    async def _process_window(self, session: str, window: dict, mode: str | None) -> None:
        index = window["window_index"]
        target = make_target(session, index)
        try:
            content = await self._sampler.capture_visible(session, index)
            if content is None:
                return

            changed = self._sampler.has_changed(session, index, content)
            if changed and self._emit_content:
                self._emitter.emit(WINDOW_CONTENT, {
                    "sessionName": session,
                    "windowIndex": index,
                    "windowName": window.get("window_name", ""),
                    "content": content,
                })

            has_agent = self._detector.has_agent(session, index)
            key = window_key(session, index)
            newly_detected = has_agent and key not in self._agent_seen
            if newly_detected:
                self._agent_seen.add(key)
                logger.info(format_target_log("Automator", target, "Agent newly detected"))

            ctx = MatchContext(
                session=session,
                window_index=index,
                mode=mode,
                paste_buffer_ready=self._paste_buffer_ready,
                load_scrollback=lambda: self._sampler.capture_scrollback(session, index),
            )
            # 登录失效检查不依赖 agent 探测结果
            if changed:
                self._engine.check_session_valid(ctx, ContentCleaner.clean_lines(content))

            if not ((changed and has_agent) or newly_detected):
                return

            if METRICS_ENABLED:
                metrics.inc("automation.evaluations")
            for result in await self._engine.evaluate(ctx, content):
                if result.fired:
                    self._emitter.emit(WINDOW_AUTOMATION, {
                        "sessionName": session,
                        "windowIndex": index,
                        "windowName": window.get("window_name", ""),
                        "matcherName": result.rule,
                        "trigger": result.trigger_used,
                    })
                    if result.report is not None and not result.report.ok:
                        self._emitter.emit_error(f"Failed to send keys to {target}")
        except SessionInvalidatedError:
            raise
        except Exception as e:
            logger.error(format_target_log("Automator", target, f"Window processing failed: {e}"))
            self._emitter.emit_error(f"Error capturing {target}", e)

    async def _paste_buffer_ready(self) -> bool:
        return bool(await self._client.show_buffer())
