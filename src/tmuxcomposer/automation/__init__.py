"""Screen-driven automation: sampling, trigger matching and key responses."""

from .automator import Automator
from .cleaner import ContentCleaner
from .keys import KeySender, Segment, SegmentKind, SendReport, parse_response
from .matcher import (
    ExecutionRecord,
    MatchContext,
    MatcherEngine,
    MatchResult,
    MatchState,
    TriggerRule,
    load_rules,
    load_rules_file,
)
from .sampler import ChecksumCache, ScreenSampler

__all__ = [
    "Automator",
    "ChecksumCache",
    "ContentCleaner",
    "ExecutionRecord",
    "KeySender",
    "MatchContext",
    "MatchResult",
    "MatchState",
    "MatcherEngine",
    "ScreenSampler",
    "Segment",
    "SegmentKind",
    "SendReport",
    "TriggerRule",
    "load_rules",
    "load_rules_file",
    "parse_response",
]
