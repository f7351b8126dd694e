"""Control Connector - 长连接 tmux 控制模式通道

负责:
- 启动 ``tmux -C attach-session -t <session>`` 子进程
- 按行读取 stdout，交给 line 回调（通常是 ControlParser.feed）
- 监听 stderr，遇到致命标记立即拆除通道
- 串行写命令，通道已关闭时抛出 ChannelClosedError
- 通道关闭时只回调一次 on_closed

重连策略不在这里，由 SessionWatcher 的监督循环负责。
"""

import asyncio
from typing import Callable

from tmuxcomposer import config
from tmuxcomposer.adapters.tmux.socket import SocketOptions
from tmuxcomposer.config import METRICS_ENABLED
from tmuxcomposer.errors import ChannelClosedError, TmuxNotFoundError
from tmuxcomposer.telemetry import get_logger, metrics, truncate

logger = get_logger(__name__)

LineCallback = Callable[[str], None]
ClosedCallback = Callable[[], None]


class ControlConnector:
    """单个控制模式子进程的生命周期"""

    def __init__(
        self,
        socket: SocketOptions,
        session: str,
        on_line: LineCallback,
        on_closed: ClosedCallback | None = None,
        settle_delay: float | None = None,
    ):
        """初始化

        Args:
            socket: tmux server 选择
            session: 要 attach 的 session（名或 id）
            on_line: 每行 stdout 的回调
            on_closed: 通道关闭回调（EOF、进程退出、致命 stderr）
            settle_delay: 启动后到写首条命令的等待
        """
        self._socket = socket
        self._session = session
        self._on_line = on_line
        self._on_closed = on_closed
        self._settle_delay = config.CONNECT_SETTLE_DELAY if settle_delay is None else settle_delay

        self._proc: asyncio.subprocess.Process | None = None
        self._readers: list[asyncio.Task] = []
        self._write_lock = asyncio.Lock()
        self._connected = False
        self._closed_event = asyncio.Event()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    def command(self) -> list[str]:
        return ["tmux", *self._socket.args(), "-C", "attach-session", "-t", self._session]

    async def connect(self, initial_commands: list[str] | None = None) -> bool:
        """启动控制模式并写入初始命令

        Returns:
            通道在写完初始命令后仍然存活

        Raises:
            TmuxNotFoundError: tmux 不存在或无权限执行
        """
        if self._proc is not None:
            await self.disconnect()

        cmd = self.command()
        logger.info(f"[Control] Connecting: {' '.join(cmd)}")
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TmuxNotFoundError("tmux command not found, please ensure tmux is installed") from e
        except PermissionError as e:
            raise TmuxNotFoundError(f"permission denied when starting tmux: {e}") from e
        except OSError as e:
            logger.error(f"[Control] Failed to spawn tmux: {e}")
            return False

        self._connected = True
        self._closed_event.clear()
        self._readers = [
            asyncio.create_task(self._read_stdout(self._proc)),
            asyncio.create_task(self._read_stderr(self._proc)),
        ]
        if METRICS_ENABLED:
            metrics.inc("control.connects")

        await asyncio.sleep(self._settle_delay)

        try:
            for command in initial_commands or []:
                await self.write(command)
        except ChannelClosedError as e:
            logger.warning(f"[Control] Failed to initialize control mode: {e}")
            return False
        return self._connected

    async def write(self, command: str) -> None:
        """写一条命令（自动补换行）

        Raises:
            ChannelClosedError: 通道已关闭或写入失败
        """
        proc = self._proc
        if not self._connected or proc is None or proc.stdin is None or proc.stdin.is_closing():
            raise ChannelClosedError("control channel is not open")

        data = command if command.endswith("\n") else command + "\n"
        async with self._write_lock:
            try:
                proc.stdin.write(data.encode())
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                await self._teardown("write failed")
                raise ChannelClosedError(f"control channel write failed: {e}") from e
        logger.debug(f"[Control] >> {truncate(data.rstrip())}")

    async def disconnect(self) -> None:
        """主动关闭通道"""
        await self._teardown("disconnect")

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    # === 读循环 ===

    async def _read_stdout(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stdout is not None
        try:
            async for raw in proc.stdout:
                line = raw.decode(errors="replace").rstrip("\r\n")
                if not line.strip():
                    continue
                try:
                    self._on_line(line)
                except Exception as e:
                    logger.error(f"[Control] Error processing line {truncate(line)!r}: {e}")
        except (ConnectionResetError, ValueError) as e:
            logger.warning(f"[Control] stdout read failed: {e}")
        finally:
            if self._proc is proc:
                returncode = await proc.wait()
                logger.info(f"[Control] Control mode process exited with code {returncode}")
                await self._teardown("eof")

    async def _read_stderr(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stderr is not None
        async for raw in proc.stderr:
            message = raw.decode(errors="replace").strip()
            if not message:
                continue
            logger.warning(f"[Control] stderr: {truncate(message)}")
            if any(marker in message for marker in config.CONTROL_ERROR_MARKERS):
                if self._proc is proc:
                    await self._teardown("server lost")
                return

    # === 拆除 ===

    async def _teardown(self, reason: str) -> None:
        """幂等拆除：关 stdin、杀进程、取消读任务、回调 on_closed"""
        if not self._connected and self._proc is None:
            return

        proc = self._proc
        self._proc = None
        was_connected = self._connected
        self._connected = False

        if proc is not None:
            if proc.stdin is not None and not proc.stdin.is_closing():
                proc.stdin.close()
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()

        current = asyncio.current_task()
        for task in self._readers:
            if task is not current and not task.done():
                task.cancel()
        self._readers = []

        logger.debug(f"[Control] Channel closed ({reason})")
        if METRICS_ENABLED:
            metrics.inc("control.closed", {"reason": reason})
        self._closed_event.set()

        if was_connected and self._on_closed is not None:
            try:
                self._on_closed()
            except Exception as e:
                logger.error(f"[Control] on_closed callback failed: {e}")
