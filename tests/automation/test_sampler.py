"""Tests for ScreenSampler and its checksum cache."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tmuxcomposer.adapters.tmux.client import TmuxClient
from tmuxcomposer.automation.sampler import ChecksumCache, ScreenSampler
from tmuxcomposer.telemetry import metrics


class TestChecksumCache:
    def test_first_sight_is_a_change(self):
        cache = ChecksumCache(10)

        assert cache.has_changed("work:0", "hello") is True
        assert cache.has_changed("work:0", "hello") is False
        assert cache.has_changed("work:0", "hello!") is True

    def test_lru_eviction(self):
        cache = ChecksumCache(2)
        cache.has_changed("a", "1")
        cache.has_changed("b", "1")
        cache.get("a")
        cache.has_changed("c", "1")

        assert "a" in cache
        assert "b" not in cache
        assert len(cache) == 2

    def test_discard(self):
        cache = ChecksumCache(2)
        cache.has_changed("a", "1")
        cache.discard("a")
        cache.discard("missing")

        assert cache.has_changed("a", "1") is True


class TestScreenSampler:
    @pytest.mark.asyncio
    async def test_capture_visible_and_scrollback(self):
        client = MagicMock(spec=TmuxClient)
        client.capture_pane = AsyncMock(return_value="screen")
        sampler = ScreenSampler(client)

        assert await sampler.capture_visible("work", "1") == "screen"
        client.capture_pane.assert_awaited_with("work:1", history_lines=0)

        await sampler.capture_scrollback("work", "1", lines=300)
        client.capture_pane.assert_awaited_with("work:1", history_lines=300)

    @pytest.mark.asyncio
    async def test_capture_failure_counts_error(self):
        client = MagicMock(spec=TmuxClient)
        client.capture_pane = AsyncMock(return_value=None)
        sampler = ScreenSampler(client)

        assert await sampler.capture_visible("work", "1") is None
        assert metrics.get_counter("capture.errors") == 1

    def test_forget_window(self):
        sampler = ScreenSampler(MagicMock(spec=TmuxClient))
        assert sampler.has_changed("work", "1", "x") is True
        sampler.forget("work", "1")
        assert sampler.has_changed("work", "1", "x") is True
