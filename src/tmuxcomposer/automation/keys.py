"""Key Sequence Interpreter - 响应模板 DSL 解析与发送

模板语法:
- 普通文本 -> 原样输入（send-keys -l）
- ``<Key>`` -> 具名按键，如 ``<Enter>``、``<S-Tab>``、``<C-c>``
- ``{command}`` -> 具名命令，目前只有 ``{paste-buffer}``

未闭合的 ``<`` / ``{`` 及空的 ``<>`` / ``{}`` 当作普通文本。

发送节奏: 每个非最后的按键/命令段之后停顿 AUTOMATION_PAUSE 秒；文本段后不停顿。
单段失败只记录，不中断后续段。同一 target 的发送串行执行。
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from tmuxcomposer import config
from tmuxcomposer.adapters.tmux.client import TmuxClient
from tmuxcomposer.adapters.tmux.keys import convert_to_tmux_key
from tmuxcomposer.config import METRICS_ENABLED
from tmuxcomposer.telemetry import format_target_log, get_logger, metrics

logger = get_logger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class SegmentKind(str, Enum):
    TEXT = "text"
    KEY = "key"
    COMMAND = "command"


@dataclass(frozen=True)
class Segment:
    kind: SegmentKind
    value: str


@dataclass
class SendReport:
    """一次发送的结果"""

    target: str
    sent: list[Segment] = field(default_factory=list)
    failed: list[tuple[Segment, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def parse_response(template: str) -> list[Segment]:
    """把响应模板解析为段列表

    Examples:
        >>> parse_response("{paste-buffer}<Enter>")
        [Segment(kind=<SegmentKind.COMMAND: 'command'>, value='paste-buffer'), Segment(kind=<SegmentKind.KEY: 'key'>, value='Enter')]
        >>> [s.value for s in parse_response("a<b")]
        ['a<b']
    """
    segments: list[Segment] = []
    text: list[str] = []

    def flush_text() -> None:
        if text:
            segments.append(Segment(SegmentKind.TEXT, "".join(text)))
            text.clear()

    i = 0
    while i < len(template):
        char = template[i]
        closer = {"<": ">", "{": "}"}.get(char)
        if closer is not None:
            end = template.find(closer, i + 1)
            name = template[i + 1:end] if end != -1 else ""
            if end != -1 and name:
                flush_text()
                kind = SegmentKind.KEY if char == "<" else SegmentKind.COMMAND
                segments.append(Segment(kind, name))
                i = end + 1
                continue
        text.append(char)
        i += 1

    flush_text()
    return segments


def pause_schedule(segments: list[Segment], pause: float) -> list[float]:
    """每段之后的停顿秒数（与 segments 一一对应）"""
    last = len(segments) - 1
    return [
        pause if index < last and segment.kind is not SegmentKind.TEXT else 0.0
        for index, segment in enumerate(segments)
    ]


class KeySender:
    """把段列表发送到 tmux target"""

    def __init__(
        self,
        client: TmuxClient,
        pause: float | None = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self._client = client
        self._pause = config.AUTOMATION_PAUSE if pause is None else pause
        self._sleep = sleep
        self._locks: dict[str, asyncio.Lock] = {}

    async def send(self, target: str, response: str | list[Segment]) -> SendReport:
        """发送响应模板

        Args:
            target: tmux target（如 "work:2"）
            response: 模板字符串或已解析的段列表

        Returns:
            SendReport，失败段在 failed 中
        """
        segments = parse_response(response) if isinstance(response, str) else response
        report = SendReport(target=target)
        lock = self._locks.setdefault(target, asyncio.Lock())

        async with lock:
            for segment, pause in zip(segments, pause_schedule(segments, self._pause)):
                error = await self._send_segment(target, segment)
                if error is None:
                    report.sent.append(segment)
                else:
                    report.failed.append((segment, error))
                    logger.warning(format_target_log("Keys", target, f"{segment.kind.value} {segment.value!r}: {error}"))
                    if METRICS_ENABLED:
                        metrics.inc("automation.send_failed", {"kind": segment.kind.value})
                if pause > 0:
                    await self._sleep(pause)

        return report

    async def _send_segment(self, target: str, segment: Segment) -> str | None:
        """发送单段，返回错误描述或 None"""
        if segment.kind is SegmentKind.TEXT:
            ok = await self._client.send_literal(target, segment.value)
        elif segment.kind is SegmentKind.KEY:
            ok = await self._client.send_key(target, convert_to_tmux_key(segment.value))
        elif segment.value == "paste-buffer":
            ok = await self._client.paste_buffer(target)
        else:
            return f"unknown command {segment.value!r}"
        return None if ok else "tmux command failed"
