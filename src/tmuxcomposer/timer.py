"""Timer - 统一定时器服务

提供不重叠的周期任务，以及前后沿节流器（延迟执行由 Throttle 的 call_later 完成）。
支持同步/异步回调，异常隔离，同名周期任务不重叠执行。

使用示例:
    timer = Timer()

    # 注册周期任务（每 0.5 秒采样一次）
    timer.register_interval("poll", 0.5, automator.poll_once)

    # 自适应周期：下一次间隔由任务自己调整
    timer.set_interval("probe", 3.0)

    await timer.run()
    timer.stop()
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Coroutine

from .config import METRICS_ENABLED
from .telemetry import get_logger, metrics

logger = get_logger(__name__)

Callback = Callable[[], Any | Coroutine[Any, Any, Any]]


@dataclass
class IntervalTask:
    """周期任务"""
    name: str
    interval: float  # 秒
    callback: Callback
    last_run: float = 0.0  # 上次启动时间（event loop time）
    running: asyncio.Task | None = None  # 正在执行的实例


class Timer:
    """统一定时器服务

    设计原则:
    1. 单个 Timer 实例负责一个 attach 周期内的所有定时任务
    2. 支持同步/异步回调（内部 create_task 包裹）
    3. 异常隔离：单个回调失败不影响其他任务
    4. 不重叠：上一次执行未结束时跳过本次 tick
    """

    def __init__(self, tick_interval: float = 0.05):
        """初始化 Timer

        Args:
            tick_interval: tick 间隔（秒），决定调度精度
        """
        self._tick_interval = tick_interval
        self._interval_tasks: dict[str, IntervalTask] = {}
        self._inflight: set[asyncio.Task] = set()
        self._running = False

    def register_interval(self, name: str, interval: float, callback: Callback) -> None:
        """注册周期任务

        首次 tick 立即执行。同名任务会被覆盖。

        Args:
            name: 任务名（用于日志和取消）
            interval: 执行间隔（秒）
            callback: 回调函数（同步或异步）
        """
        self._interval_tasks[name] = IntervalTask(name=name, interval=interval, callback=callback)
        logger.debug(f"[Timer] Registered interval task: {name} ({interval}s)")

    def set_interval(self, name: str, interval: float) -> bool:
        """调整周期任务间隔，下一次调度生效

        Returns:
            任务是否存在
        """
        task = self._interval_tasks.get(name)
        if task is None:
            return False
        if task.interval != interval:
            logger.debug(f"[Timer] Interval of {name}: {task.interval}s -> {interval}s")
            task.interval = interval
        return True

    def get_interval(self, name: str) -> float | None:
        """获取周期任务当前间隔"""
        task = self._interval_tasks.get(name)
        return task.interval if task else None

    def unregister_interval(self, name: str) -> bool:
        """取消注册周期任务"""
        if self._interval_tasks.pop(name, None) is not None:
            logger.debug(f"[Timer] Unregistered interval task: {name}")
            return True
        return False

    async def run(self) -> None:
        """启动 Timer 主循环，持续运行直到 stop()"""
        if self._running:
            logger.warning("[Timer] Already running")
            return

        self._running = True
        logger.debug(f"[Timer] Started (tick={self._tick_interval}s)")

        try:
            while self._running:
                self._tick()
                await asyncio.sleep(self._tick_interval)
        except asyncio.CancelledError:
            logger.debug("[Timer] Cancelled")
            raise
        finally:
            self._cleanup()

    def stop(self) -> None:
        """停止 Timer，取消执行中的回调"""
        if not self._running:
            return
        self._running = False
        for task in list(self._inflight):
            task.cancel()

    def _cleanup(self) -> None:
        self._running = False
        for task in list(self._inflight):
            task.cancel()

    def _tick(self) -> None:
        """执行一次 tick：启动到期的任务"""
        now = asyncio.get_running_loop().time()

        for task in list(self._interval_tasks.values()):
            if now - task.last_run < task.interval:
                continue
            if task.running is not None and not task.running.done():
                # 上一次还没跑完，跳过
                if METRICS_ENABLED:
                    metrics.inc("timer.skipped", {"task": task.name})
                continue
            task.last_run = now
            task.running = self._spawn(task.name, task.callback)

    def _spawn(self, name: str, callback: Callback) -> asyncio.Task:
        task = asyncio.create_task(self._execute_callback(name, callback))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _execute_callback(self, name: str, callback: Callback) -> None:
        """执行回调（带异常隔离）"""
        try:
            result = callback()
            if inspect.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Timer] Task '{name}' failed: {e}")
            if METRICS_ENABLED:
                metrics.inc("timer.errors", {"task": name})

    # === 状态查询（用于测试）===

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def interval_task_count(self) -> int:
        return len(self._interval_tasks)

    def get_interval_tasks(self) -> list[str]:
        return list(self._interval_tasks)


class Throttle:
    """前后沿节流器

    第一次调用立即执行；窗口期内的后续调用合并为一次尾沿执行。
    """

    def __init__(self, callback: Callback, wait: float, name: str = "throttle"):
        self._callback = callback
        self._wait = wait
        self._name = name
        self._last_call = float("-inf")
        self._pending: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Future] = set()

    def __call__(self) -> None:
        loop = asyncio.get_running_loop()
        now = loop.time()
        elapsed = now - self._last_call

        if elapsed >= self._wait and self._pending is None:
            self._invoke()
            return

        if self._pending is None:
            remaining = max(self._wait - elapsed, 0.0)
            self._pending = loop.call_later(remaining, self._trailing)

    def cancel(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _trailing(self) -> None:
        self._pending = None
        self._invoke()

    def _invoke(self) -> None:
        self._last_call = asyncio.get_running_loop().time()
        try:
            result = self._callback()
            if inspect.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._log_failure)
        except Exception as e:
            logger.error(f"[Throttle] '{self._name}' failed: {e}")

    def _log_failure(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[Throttle] '{self._name}' failed: {task.exception()}")
