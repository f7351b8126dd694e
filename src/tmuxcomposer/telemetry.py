"""Telemetry - 统一日志和指标入口

提供统一的日志工厂和指标 facade，便于观测性追踪。

日志格式: [Component] msg 或 [module:session:window] msg
指标示例: control.lines, control.ignored, automation.fired, capture.errors, timer.errors
"""

import logging
import sys

from rich.console import Console
from rich.logging import RichHandler


def get_logger(name: str) -> logging.Logger:
    """获取带模块前缀的 logger

    Args:
        name: 模块名（通常使用 __name__）

    Returns:
        配置好的 Logger 实例
    """
    return logging.getLogger(name)


def setup_logging(level: str | None = None) -> None:
    """配置根 logger

    日志写到 stderr（RichHandler），stdout 只留给 JSON 事件。

    Args:
        level: 日志级别名，None 使用配置默认值
    """
    from . import config

    log_level = getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO)
    handler = RichHandler(
        console=Console(file=sys.stderr),
        show_path=False,
        rich_tracebacks=True,
    )
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )


def format_target_log(module: str, target: str, msg: str) -> str:
    """格式化带 tmux target 的日志消息

    Args:
        module: 模块名
        target: tmux target（如 "work:2"）
        msg: 日志消息

    Returns:
        格式化的消息: [module:target] msg
    """
    return f"[{module}:{target or 'unknown'}] {msg}"


def truncate(text: str, limit: int | None = None) -> str:
    """截断过长的日志内容"""
    from . import config

    limit = limit or config.LOG_MAX_LINE_LEN
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class Metrics:
    """指标收集 facade

    提供简单的计数器和 gauge 接口，内存存储。
    """

    def __init__(self):
        self._counters: dict[str, int] = {}
        self._gauges: dict[str, float] = {}

    def inc(self, name: str, labels: dict[str, str] | None = None, value: int = 1) -> None:
        """递增计数器

        Args:
            name: 指标名（如 "automation.fired"）
            labels: 可选标签（如 {"rule": "trust-folder"}）
            value: 递增值，默认 1
        """
        key = self._make_key(name, labels)
        self._counters[key] = self._counters.get(key, 0) + value

    def gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        """设置 gauge 值"""
        key = self._make_key(name, labels)
        self._gauges[key] = value

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        """获取计数器值（用于测试）"""
        return self._counters.get(self._make_key(name, labels), 0)

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        """获取 gauge 值（用于测试）"""
        return self._gauges.get(self._make_key(name, labels), 0.0)

    def reset(self) -> None:
        """重置所有指标（用于测试）"""
        self._counters.clear()
        self._gauges.clear()

    def _make_key(self, name: str, labels: dict[str, str] | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# 全局指标实例
metrics = Metrics()
