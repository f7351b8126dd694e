"""Matcher Engine - 触发规则求值

规则状态机（每条规则每次求值）::

    idle ──前置条件满足──> candidate ──确认──> confirmed ──发送──> fired
      │                      │                   │
      └──────────────────────┴───────────────────┴──> rejected

匹配:
- 单片段: 可见屏幕任一行包含该片段即确认
- 多片段: 最后一个片段出现在可见屏幕上才成为 candidate（门控）；
  再抓 scrollback，按顺序查找所有片段（每个片段位于上一个片段之后，
  同一行内在其结尾之后），取最早的匹配位置
- 主 trigger 不命中时尝试 wrapped_trigger（终端折行的备用写法）

前置条件: 模式匹配（rule.mode == "all" 或等于 session 模式）、
依赖 paste buffer 的规则要求 buffer 非空。

登录失效标记优先于任何规则检查，命中直接抛 SessionInvalidatedError。
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from tmuxcomposer import config
from tmuxcomposer.adapters.tmux.client import make_target
from tmuxcomposer.config import METRICS_ENABLED
from tmuxcomposer.errors import SessionInvalidatedError
from tmuxcomposer.telemetry import format_target_log, get_logger, metrics

from .cleaner import ContentCleaner
from .keys import KeySender, SendReport

logger = get_logger(__name__)


# === 规则定义 ===


class TriggerRule(BaseModel):
    """一条自动化规则"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    trigger: list[str] = Field(min_length=1)
    wrapped_trigger: list[str] | None = None
    response: str = Field(min_length=1)
    run_once: bool = True
    mode: Literal["act", "plan", "all"] = "all"
    requires_paste_buffer: bool = False

    @field_validator("trigger", "wrapped_trigger")
    @classmethod
    def _fragments_not_blank(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return value
        if not value:
            raise ValueError("fragment list must not be empty")
        if any(not fragment.strip() for fragment in value):
            raise ValueError("fragments must not be blank")
        return value

    @property
    def needs_paste_buffer(self) -> bool:
        return self.requires_paste_buffer or self.name in config.PASTE_BUFFER_RULES

    def applies_to_mode(self, mode: str | None) -> bool:
        return self.mode == "all" or self.mode == mode


_RULES_ADAPTER = TypeAdapter(list[TriggerRule])


def load_rules(raw: list[dict] | None = None) -> list[TriggerRule]:
    """校验规则表

    Args:
        raw: 规则 dict 列表，None 使用 config.MATCHERS

    Raises:
        pydantic.ValidationError: 字段非法
        ValueError: 规则名重复
    """
    rules = _RULES_ADAPTER.validate_python(config.MATCHERS if raw is None else raw)
    seen: set[str] = set()
    for rule in rules:
        if rule.name in seen:
            raise ValueError(f"Duplicate matcher name: {rule.name!r}")
        seen.add(rule.name)
    return rules


def load_rules_file(path: str | Path) -> list[TriggerRule]:
    """从 JSON 文件加载规则表"""
    return load_rules(json.loads(Path(path).read_text(encoding="utf-8")))


# === 匹配函数 ===


def find_in_order(lines: list[str], fragments: list[str]) -> list[tuple[int, int]] | None:
    """按顺序查找所有片段，返回每个片段的 (行号, 列号)

    每个片段从上一个片段结尾之后开始找，取最早出现的位置。
    """
    positions: list[tuple[int, int]] = []
    line_no, col = 0, 0
    for fragment in fragments:
        found = None
        while line_no < len(lines):
            index = lines[line_no].find(fragment, col)
            if index != -1:
                found = (line_no, index)
                break
            line_no += 1
            col = 0
        if found is None:
            return None
        positions.append(found)
        col = found[1] + len(fragment)
    return positions


def contains_fragment(lines: list[str], fragment: str) -> bool:
    return any(fragment in line for line in lines)


# === 求值状态 ===


class MatchState(str, Enum):
    IDLE = "idle"
    CANDIDATE = "candidate"
    CONFIRMED = "confirmed"
    FIRED = "fired"
    REJECTED = "rejected"


@dataclass
class MatchResult:
    """单条规则一次求值的结果"""

    rule: str
    state: MatchState = MatchState.IDLE
    trail: list[MatchState] = field(default_factory=lambda: [MatchState.IDLE])
    reason: str = ""
    trigger_used: str | None = None  # "trigger" | "wrapped_trigger"
    report: SendReport | None = None

    def advance(self, state: MatchState, reason: str = "") -> "MatchResult":
        self.state = state
        self.trail.append(state)
        if reason:
            self.reason = reason
        return self

    @property
    def fired(self) -> bool:
        return self.state is MatchState.FIRED


class ExecutionRecord:
    """已执行的 (session, window, rule) 集合，保证 run_once"""

    def __init__(self):
        self._executed: set[tuple[str, str, str]] = set()

    def __len__(self) -> int:
        return len(self._executed)

    def has(self, session: str, window: str, rule: str) -> bool:
        return (session, window, rule) in self._executed

    def add(self, session: str, window: str, rule: str) -> None:
        self._executed.add((session, window, rule))

    def forget_window(self, session: str, window: str) -> None:
        self._executed = {key for key in self._executed if key[:2] != (session, window)}

    def clear(self) -> None:
        self._executed.clear()


TextLoader = Callable[[], Awaitable[str | None]]
FlagLoader = Callable[[], Awaitable[bool]]


@dataclass
class MatchContext:
    """一次 window 求值所需的外部信息"""

    session: str
    window_index: str
    mode: str | None = None
    paste_buffer_ready: FlagLoader | None = None
    load_scrollback: TextLoader | None = None

    @property
    def target(self) -> str:
        return make_target(self.session, self.window_index)


class _LazyLines:
    """scrollback 每次求值最多抓一次"""

    def __init__(self, loader: TextLoader | None):
        self._loader = loader
        self._loaded = False
        self._lines: list[str] | None = None

    async def get(self) -> list[str] | None:
        if not self._loaded:
            self._loaded = True
            content = await self._loader() if self._loader else None
            self._lines = ContentCleaner.clean_lines(content) if content is not None else None
        return self._lines


class _LazyFlag:
    def __init__(self, loader: FlagLoader | None):
        self._loader = loader
        self._value: bool | None = None

    async def get(self) -> bool:
        if self._value is None:
            self._value = bool(await self._loader()) if self._loader else False
        return self._value


# === 引擎 ===


class MatcherEngine:
    """对一个 window 的内容按声明顺序求值所有规则"""

    def __init__(
        self,
        rules: list[TriggerRule],
        sender: KeySender,
        records: ExecutionRecord | None = None,
        skip: Mapping[str, bool] | None = None,
        invalid_marker: str | None = None,
    ):
        """初始化

        Args:
            rules: 规则表（声明顺序即求值顺序）
            sender: 按键发送器
            records: run_once 执行记录
            skip: 规则名 -> 是否禁用（值为 True 的规则被跳过）
            invalid_marker: 登录失效标记
        """
        self._rules = list(rules)
        self._sender = sender
        self._records = records or ExecutionRecord()
        self._skip = {name for name, disabled in (skip or {}).items() if disabled}
        self._invalid_marker = invalid_marker or config.SESSION_INVALID_MARKER

    @property
    def rules(self) -> list[TriggerRule]:
        return list(self._rules)

    @property
    def records(self) -> ExecutionRecord:
        return self._records

    def check_session_valid(self, ctx: MatchContext, lines: list[str]) -> None:
        """Raises:
            SessionInvalidatedError: 屏幕上出现登录失效标记
        """
        if contains_fragment(lines, self._invalid_marker):
            raise SessionInvalidatedError(ctx.session, ctx.window_index, self._invalid_marker)

    async def evaluate(self, ctx: MatchContext, content: str) -> list[MatchResult]:
        """求值所有规则，命中即发送响应

        Raises:
            SessionInvalidatedError: 先于任何规则检查
        """
        lines = ContentCleaner.clean_lines(content)
        self.check_session_valid(ctx, lines)

        scrollback = _LazyLines(ctx.load_scrollback)
        paste_ready = _LazyFlag(ctx.paste_buffer_ready)
        results = []
        for rule in self._rules:
            result = await self._evaluate_rule(rule, ctx, lines, scrollback, paste_ready)
            results.append(result)
        return results

    async def _evaluate_rule(
        self,
        rule: TriggerRule,
        ctx: MatchContext,
        lines: list[str],
        scrollback: _LazyLines,
        paste_ready: _LazyFlag,
    ) -> MatchResult:
        result = MatchResult(rule=rule.name)

        if rule.name in self._skip:
            return result.advance(MatchState.REJECTED, "skipped")
        if not rule.applies_to_mode(ctx.mode):
            return result.advance(MatchState.REJECTED, f"mode {ctx.mode!r}")

        used = None
        for label, fragments in (("trigger", rule.trigger), ("wrapped_trigger", rule.wrapped_trigger)):
            if not fragments:
                continue
            state = await self._match(fragments, lines, scrollback)
            if state is MatchState.CANDIDATE and result.state is MatchState.IDLE:
                result.advance(MatchState.CANDIDATE)
            if state is MatchState.CONFIRMED:
                used = label
                break

        if used is None:
            return result.advance(MatchState.REJECTED, "no match")

        if result.state is MatchState.IDLE:
            result.advance(MatchState.CANDIDATE)
        result.trigger_used = used
        result.advance(MatchState.CONFIRMED)

        if rule.run_once and self._records.has(ctx.session, ctx.window_index, rule.name):
            return result.advance(MatchState.REJECTED, "already executed")
        if rule.needs_paste_buffer and not await paste_ready.get():
            return result.advance(MatchState.REJECTED, "paste buffer empty")

        logger.info(format_target_log("Matcher", ctx.target, f"Firing {rule.name} ({used})"))
        result.report = await self._sender.send(ctx.target, rule.response)
        if rule.run_once:
            self._records.add(ctx.session, ctx.window_index, rule.name)
        if METRICS_ENABLED:
            metrics.inc("automation.fired", {"rule": rule.name})
        return result.advance(MatchState.FIRED)

    async def _match(self, fragments: list[str], lines: list[str], scrollback: _LazyLines) -> MatchState:
        """Returns:
            IDLE（门控未过）、CANDIDATE（门控过、未确认）或 CONFIRMED
        """
        if len(fragments) == 1:
            return MatchState.CONFIRMED if contains_fragment(lines, fragments[0]) else MatchState.IDLE

        if not contains_fragment(lines, fragments[-1]):
            return MatchState.IDLE

        history = await scrollback.get()
        if history is None:
            history = lines
        if find_in_order(history, fragments) is not None:
            return MatchState.CONFIRMED
        return MatchState.CANDIDATE
