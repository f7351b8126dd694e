"""Agent detector factory."""

import logging

from tmuxcomposer import config
from tmuxcomposer.adapters.tmux.client import TmuxClient

from .base import AgentDetector
from .command import CommandQueryDetector
from .process import ProcessTreeDetector

logger = logging.getLogger(__name__)

STRATEGIES = ("process", "command")


def create_detector(
    strategy: str | None = None,
    client: TmuxClient | None = None,
    agent_command: str | None = None,
) -> AgentDetector:
    """Create an agent detector for one-shot polling.

    The control-channel strategy (``LivenessProber``) is wired by
    ``SessionWatcher`` itself since it needs the live channel.

    Args:
        strategy: "process" (walk the process tree) or "command"
                  (compare pane_current_command). Default from config.
        client: TmuxClient used for pane listing.
        agent_command: Agent process name. Default from config.

    Returns:
        AgentDetector instance.

    Raises:
        ValueError: Unknown strategy.
    """
    strategy = strategy or config.DETECTOR_STRATEGY
    client = client or TmuxClient()
    logger.debug(f"Creating {strategy} agent detector")

    if strategy == "process":
        return ProcessTreeDetector(client, agent_command)
    if strategy == "command":
        return CommandQueryDetector(client, agent_command)
    raise ValueError(f"Unknown detector strategy: {strategy!r} (expected one of {', '.join(STRATEGIES)})")
