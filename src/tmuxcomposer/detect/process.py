"""进程树探测：从 pane 的 shell pid 向下查找 agent 进程"""

import asyncio
import os
from collections import defaultdict, deque

from tmuxcomposer import config
from tmuxcomposer.adapters.tmux.client import TmuxClient
from tmuxcomposer.core.ids import window_key
from tmuxcomposer.telemetry import get_logger

from .base import AgentDetector

logger = get_logger(__name__)

ProcessTree = dict[int, list[tuple[int, str]]]  # ppid -> [(pid, comm)]


def parse_ps_output(output: str) -> ProcessTree:
    """解析 ``ps -A -o pid=,ppid=,comm=`` 输出为父 -> 子映射"""
    tree: ProcessTree = defaultdict(list)
    for line in output.splitlines():
        parts = line.split(None, 2)
        if len(parts) < 3:
            continue
        try:
            pid, ppid = int(parts[0]), int(parts[1])
        except ValueError:
            continue
        tree[ppid].append((pid, os.path.basename(parts[2].strip())))
    return dict(tree)


def find_descendant(root_pid: int, name: str, tree: ProcessTree) -> int | None:
    """广度优先查找 root_pid 下名为 name 的后代进程

    Returns:
        匹配进程的 pid，没有则 None
    """
    queue = deque([root_pid])
    visited = {root_pid}
    while queue:
        pid = queue.popleft()
        for child_pid, comm in tree.get(pid, []):
            if comm == name:
                return child_pid
            if child_pid not in visited:
                visited.add(child_pid)
                queue.append(child_pid)
    return None


class ProcessTreeDetector(AgentDetector):
    """进程树策略：pane_pid 的后代里有 agent 进程即视为命中"""

    name = "process"

    def __init__(self, client: TmuxClient, agent_command: str | None = None):
        self._client = client
        self._agent_command = agent_command or config.AGENT_COMMAND
        self._windows: set[str] = set()

    @property
    def agent_windows(self) -> set[str]:
        return set(self._windows)

    async def refresh(self) -> None:
        panes = await self._client.list_panes()
        tree = await self._load_process_tree()
        if tree is None:
            return

        windows = set()
        for pane in panes:
            if find_descendant(pane["pane_pid"], self._agent_command, tree) is not None:
                windows.add(window_key(pane["session_name"], pane["window_index"]))
        if windows != self._windows:
            logger.debug(f"[Detect] Agent running in {len(windows)} windows: {sorted(windows)}")
        self._windows = windows

    def has_agent(self, session: str, window_index: str) -> bool:
        return window_key(session, window_index) in self._windows

    async def _load_process_tree(self) -> ProcessTree | None:
        try:
            proc = await asyncio.create_subprocess_exec(
                "ps", "-A", "-o", "pid=,ppid=,comm=",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=config.TMUX_COMMAND_TIMEOUT)
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"[Detect] Failed to list processes: {e}")
            return None
        if proc.returncode != 0:
            logger.warning(f"[Detect] ps failed: {stderr.decode(errors='replace').strip()}")
            return None
        return parse_ps_output(stdout.decode(errors="replace"))
