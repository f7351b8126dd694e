"""Agent 探测器基类"""

from abc import ABC, abstractmethod


class AgentDetector(ABC):
    """判断哪些 window 里正在运行 agent 进程

    每个实现负责：
    1. refresh() 时重建自己的缓存
    2. has_agent() 只读缓存，不做 IO
    """

    name: str  # 策略标识: "process", "command", "control"

    @abstractmethod
    async def refresh(self) -> None:
        """重建 agent 所在 window 的缓存"""
        pass

    @abstractmethod
    def has_agent(self, session: str, window_index: str) -> bool:
        """window 中是否有 agent 在运行"""
        pass
