"""前台命令探测：pane_current_command 等于 agent 名即视为命中"""

from tmuxcomposer import config
from tmuxcomposer.adapters.tmux.client import TmuxClient
from tmuxcomposer.core.ids import window_key

from .base import AgentDetector


class CommandQueryDetector(AgentDetector):
    """一次 list-panes 查询所有 pane 的前台命令"""

    name = "command"

    def __init__(self, client: TmuxClient, agent_command: str | None = None):
        self._client = client
        self._agent_command = agent_command or config.AGENT_COMMAND
        self._windows: set[str] = set()

    async def refresh(self) -> None:
        panes = await self._client.list_panes()
        self._windows = {
            window_key(pane["session_name"], pane["window_index"])
            for pane in panes
            if pane["command"] == self._agent_command
        }

    def has_agent(self, session: str, window_index: str) -> bool:
        return window_key(session, window_index) in self._windows
