"""SessionWatcher - 单个 session 的控制模式监视器

组装控制通道各组件并负责监督循环:

    ControlConnector ──line──> ControlParser ──> TopologyStore ──snapshot──> EventEmitter
          ^                        │   │                ^
          │                        │   └─probe reply──> LivenessProber (Timer 驱动)
          └──── Throttle(refresh) <┘

监督循环（reconnect=True）:
- socket 不存在: 每 SOCKET_POLL_INTERVAL 轮询，不计入重连次数
- socket 存在但未连接: 按 ReconnectPolicy 退避重连，次数耗尽抛 ReconnectExhaustedError，run() 返回 EXIT_RECONNECT_EXHAUSTED
- 连接成功后重连计数归零
"""

import asyncio

from . import config
from .adapters.tmux.client import TmuxClient
from .control.backoff import ReconnectPolicy
from .control.connector import ControlConnector
from .control.parser import ControlParser
from .control.protocol import list_panes_command
from .detect.prober import LivenessProber
from .errors import ChannelClosedError, ReconnectExhaustedError, TmuxNotFoundError
from .events import SESSION_CHANGED, EventEmitter
from .telemetry import get_logger
from .timer import Throttle, Timer
from .topology.models import SessionSnapshot
from .topology.store import TopologyStore

logger = get_logger(__name__)


class SessionWatcher:
    """监视一个 session 的拓扑并发布 session-changed 事件"""

    def __init__(
        self,
        client: TmuxClient,
        emitter: EventEmitter,
        session: str | None = None,
        reconnect: bool = True,
        policy: ReconnectPolicy | None = None,
        agent_command: str | None = None,
    ):
        """初始化

        Args:
            client: 一次性 tmux 命令客户端（也决定 socket）
            emitter: 事件发布器
            session: 要监视的 session（名或 id），None 表示当前 client 所在 session
            reconnect: 通道断开后是否自动重连
            policy: 重连退避策略
            agent_command: agent 进程名
        """
        self._client = client
        self._emitter = emitter
        self._session = session
        self._reconnect = reconnect
        self._policy = policy or ReconnectPolicy()

        self._timer = Timer()
        self._store = TopologyStore(on_snapshot=self._publish)
        self._refresh = Throttle(self._refresh_topology, config.REFRESH_THROTTLE, name="topology-refresh")
        self._prober = LivenessProber(self._store, self._write, self._timer, agent_command=agent_command)
        self._parser = ControlParser(
            self._store,
            request_refresh=self._refresh,
            on_probe_reply=self._prober.on_reply,
            agent_command=agent_command,
        )
        self._connector: ControlConnector | None = None
        self._stopping = asyncio.Event()

    # === 属性 ===

    @property
    def store(self) -> TopologyStore:
        return self._store

    @property
    def parser(self) -> ControlParser:
        return self._parser

    @property
    def prober(self) -> LivenessProber:
        return self._prober

    @property
    def is_connected(self) -> bool:
        return self._connector is not None and self._connector.is_connected

    # === 生命周期 ===

    async def run(self) -> int:
        """运行直到 stop()、重连耗尽或启动失败

        Returns:
            进程退出码
        """
        resolved = await self._resolve_session()
        if resolved is None:
            logger.error(
                f"[Watcher] Could not resolve tmux session {self._session or '(current)'}; "
                "is tmux running and are you inside a session?"
            )
            return config.EXIT_STARTUP_FAILED

        session_id, session_name = resolved
        self._store.set_session(session_id, session_name)
        self._emitter.update_context(
            script="watch-session",
            sessionId=session_id,
            sessionName=session_name,
            socketPath=self._client.socket.resolve_path(),
        )
        logger.info(f"[Watcher] Watching session {session_name} ({session_id})")

        timer_task = asyncio.create_task(self._timer.run())
        try:
            if self._reconnect:
                return await self._supervise()
            return await self._run_once()
        except TmuxNotFoundError as e:
            logger.error(f"[Watcher] {e}")
            return config.EXIT_STARTUP_FAILED
        except ReconnectExhaustedError as e:
            logger.error(f"[Watcher] Giving up: {e}")
            return config.EXIT_RECONNECT_EXHAUSTED
        finally:
            await self._shutdown()
            timer_task.cancel()
            try:
                await timer_task
            except asyncio.CancelledError:
                pass

    def stop(self) -> None:
        """请求优雅退出（信号处理器调用）"""
        if not self._stopping.is_set():
            logger.info("[Watcher] Shutting down...")
        self._stopping.set()

    async def _run_once(self) -> int:
        if not await self._attach():
            return config.EXIT_STARTUP_FAILED
        assert self._connector is not None
        stop_wait = asyncio.create_task(self._stopping.wait())
        closed_wait = asyncio.create_task(self._connector.wait_closed())
        done, pending = await asyncio.wait({stop_wait, closed_wait}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        return config.EXIT_OK

    async def _supervise(self) -> int:
        attempts = 0
        waiting_logged = False

        while not self._stopping.is_set():
            if not self._client.socket.exists():
                if not waiting_logged:
                    logger.info(f"[Watcher] Waiting for tmux server at {self._client.socket.resolve_path()}...")
                    waiting_logged = True
                attempts = 0
                await self._sleep(config.SOCKET_POLL_INTERVAL)
                continue
            waiting_logged = False

            if self.is_connected:
                await self._sleep(config.SOCKET_POLL_INTERVAL)
                continue

            if attempts > 0:
                logger.info(f"[Watcher] Reconnect attempt {attempts + 1}/{self._policy.max_attempts}")
            if await self._attach():
                attempts = 0
                continue

            attempts += 1
            if self._policy.exhausted(attempts):
                raise ReconnectExhaustedError(attempts)
            delay = self._policy.delay(attempts - 1)
            logger.warning(f"[Watcher] Connection failed, retrying in {delay:.2f}s")
            await self._sleep(delay)

        return config.EXIT_OK

    async def _attach(self) -> bool:
        """解析 session 并建立控制通道

        Raises:
            TmuxNotFoundError: tmux 无法启动
        """
        resolved = await self._resolve_session()
        if resolved is None:
            return False
        session_id, session_name = resolved
        self._store.set_session(session_id, session_name)

        self._store.prepare_refresh()
        self._connector = ControlConnector(
            self._client.socket,
            session_id,
            on_line=self._parser.feed,
            on_closed=self._on_closed,
        )
        if not await self._connector.connect([list_panes_command(session_id)]):
            return False

        self._prober.start()
        logger.info(f"[Watcher] Attached to {session_name} ({session_id})")
        return True

    async def _shutdown(self) -> None:
        self._prober.stop()
        self._refresh.cancel()
        if self._connector is not None:
            await self._connector.disconnect()
        self._timer.stop()

    def _on_closed(self) -> None:
        """通道关闭：清空工作集，等待监督循环重连"""
        logger.warning("[Watcher] Control channel closed")
        self._prober.stop()
        self._refresh.cancel()
        self._parser.reset()
        self._store.clear()

    # === 组件回调 ===

    async def _resolve_session(self) -> tuple[str, str] | None:
        if self._session is None:
            return await self._client.current_session()
        output = await self._client.display_message("#{session_id}\t#{session_name}", target=self._session)
        if not output or "\t" not in output:
            return None
        session_id, session_name = output.split("\t", 1)
        return session_id, session_name

    async def _write(self, command: str) -> None:
        if self._connector is None:
            raise ChannelClosedError("control channel is not open")
        await self._connector.write(command)

    async def _refresh_topology(self) -> None:
        session_id = self._store.session_id
        if session_id is None or not self.is_connected:
            return
        self._store.prepare_refresh()
        try:
            await self._write(list_panes_command(session_id))
        except ChannelClosedError as e:
            logger.debug(f"[Watcher] Refresh skipped: {e}")

    def _publish(self, snapshot: SessionSnapshot) -> None:
        self._emitter.emit(SESSION_CHANGED, snapshot.to_dict())

    async def _sleep(self, seconds: float) -> None:
        """可被 stop() 打断的 sleep"""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
