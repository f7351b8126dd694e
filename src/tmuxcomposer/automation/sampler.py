"""Screen Sampler - 抓取 window 可见内容 / scrollback，做变化检测

- capture 失败（window 刚关闭、server 抖动）返回 None，调用方视为瞬时错误
- 变化检测基于原始内容 MD5，LRU 容量 MAX_CHECKSUM_CACHE_SIZE
"""

from collections import OrderedDict

from tmuxcomposer import config
from tmuxcomposer.adapters.tmux.client import TmuxClient, make_target
from tmuxcomposer.config import METRICS_ENABLED
from tmuxcomposer.core.ids import window_key
from tmuxcomposer.telemetry import format_target_log, get_logger, metrics

from .cleaner import ContentCleaner

logger = get_logger(__name__)


class ChecksumCache:
    """有界 LRU：key -> 内容 checksum"""

    def __init__(self, max_size: int | None = None):
        self._max_size = max_size or config.MAX_CHECKSUM_CACHE_SIZE
        self._data: OrderedDict[str, str] = OrderedDict()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def get(self, key: str) -> str | None:
        value = self._data.get(key)
        if value is not None:
            self._data.move_to_end(key)
        return value

    def set(self, key: str, checksum: str) -> None:
        self._data[key] = checksum
        self._data.move_to_end(key)
        while len(self._data) > self._max_size:
            self._data.popitem(last=False)

    def has_changed(self, key: str, content: str) -> bool:
        """记录新 checksum，返回是否与上次不同（未见过的 key 视为变化）"""
        checksum = ContentCleaner.checksum(content)
        if self.get(key) == checksum:
            return False
        self.set(key, checksum)
        return True

    def discard(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


class ScreenSampler:
    """Window 内容采样"""

    def __init__(self, client: TmuxClient, cache_size: int | None = None):
        self._client = client
        self._cache = ChecksumCache(cache_size)

    @property
    def cache(self) -> ChecksumCache:
        return self._cache

    async def capture_visible(self, session: str, window_index: str) -> str | None:
        """抓取可见屏幕"""
        return await self._capture(session, window_index, 0)

    async def capture_scrollback(self, session: str, window_index: str, lines: int | None = None) -> str | None:
        """抓取可见屏幕及其上方 lines 行历史"""
        return await self._capture(session, window_index, lines or config.SCROLLBACK_LINES)

    def has_changed(self, session: str, window_index: str, content: str) -> bool:
        return self._cache.has_changed(window_key(session, window_index), content)

    def forget(self, session: str, window_index: str) -> None:
        self._cache.discard(window_key(session, window_index))

    def clear(self) -> None:
        self._cache.clear()

    async def _capture(self, session: str, window_index: str, history: int) -> str | None:
        target = make_target(session, window_index)
        content = await self._client.capture_pane(target, history_lines=history)
        if content is None:
            logger.debug(format_target_log("Sampler", target, "capture failed"))
            if METRICS_ENABLED:
                metrics.inc("capture.errors")
        return content
