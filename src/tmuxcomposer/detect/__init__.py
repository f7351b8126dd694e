"""Agent liveness detection strategies."""

from .base import AgentDetector
from .command import CommandQueryDetector
from .factory import STRATEGIES, create_detector
from .process import ProcessTreeDetector, find_descendant, parse_ps_output
from .prober import LivenessProber

__all__ = [
    "STRATEGIES",
    "AgentDetector",
    "CommandQueryDetector",
    "LivenessProber",
    "ProcessTreeDetector",
    "create_detector",
    "find_descendant",
    "parse_ps_output",
]
