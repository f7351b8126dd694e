"""Tests for the response template DSL and KeySender."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from tmuxcomposer.adapters.tmux.client import TmuxClient
from tmuxcomposer.automation.keys import (
    KeySender,
    Segment,
    SegmentKind,
    parse_response,
    pause_schedule,
)

TEXT, KEY, COMMAND = SegmentKind.TEXT, SegmentKind.KEY, SegmentKind.COMMAND


class TestParseResponse:
    def test_keys_and_commands(self):
        assert parse_response("{paste-buffer}<Enter>") == [
            Segment(COMMAND, "paste-buffer"),
            Segment(KEY, "Enter"),
        ]

    def test_text_is_merged(self):
        assert parse_response("yes please<Enter>") == [
            Segment(TEXT, "yes please"),
            Segment(KEY, "Enter"),
        ]

    def test_repeated_keys(self):
        assert parse_response("<S-Tab><S-Tab>") == [Segment(KEY, "S-Tab"), Segment(KEY, "S-Tab")]

    def test_unterminated_is_literal(self):
        assert parse_response("a < b {c") == [Segment(TEXT, "a < b {c")]

    def test_empty_brackets_are_literal(self):
        assert parse_response("<>{}<Enter>") == [Segment(TEXT, "<>{}"), Segment(KEY, "Enter")]

    def test_empty_template(self):
        assert parse_response("") == []


class TestPauseSchedule:
    def test_pause_after_non_final_keys_only(self):
        segments = parse_response("{paste-buffer}hi<Enter><Enter>")
        assert pause_schedule(segments, 0.5) == [0.5, 0.0, 0.5, 0.0]


def _client(**results) -> MagicMock:
    client = MagicMock(spec=TmuxClient)
    client.send_literal = AsyncMock(return_value=results.get("literal", True))
    client.send_key = AsyncMock(return_value=results.get("key", True))
    client.paste_buffer = AsyncMock(return_value=results.get("paste", True))
    return client


class TestKeySender:
    @pytest.mark.asyncio
    async def test_send_with_pacing(self):
        client = _client()
        pauses = []

        async def sleep(seconds):
            pauses.append(seconds)

        sender = KeySender(client, pause=0.5, sleep=sleep)
        report = await sender.send("work:1", "<S-Tab><S-Tab>")

        assert report.ok
        assert [call.args for call in client.send_key.call_args_list] == [("work:1", "BTab"), ("work:1", "BTab")]
        assert pauses == [0.5]

    @pytest.mark.asyncio
    async def test_paste_buffer_command(self):
        client = _client()
        sender = KeySender(client, pause=0, sleep=AsyncMock())

        report = await sender.send("work:1", "{paste-buffer}<Enter>")

        client.paste_buffer.assert_awaited_once_with("work:1")
        client.send_key.assert_awaited_once_with("work:1", "Enter")
        assert len(report.sent) == 2

    @pytest.mark.asyncio
    async def test_failure_does_not_abort(self):
        client = _client(paste=False)
        sender = KeySender(client, pause=0, sleep=AsyncMock())

        report = await sender.send("work:1", "{paste-buffer}<Enter>")

        assert not report.ok
        assert report.failed[0][0] == Segment(COMMAND, "paste-buffer")
        assert report.sent == [Segment(KEY, "Enter")]

    @pytest.mark.asyncio
    async def test_unknown_command_reported(self):
        client = _client()
        sender = KeySender(client, pause=0, sleep=AsyncMock())

        report = await sender.send("work:1", "{clear-history}")

        assert report.failed == [(Segment(COMMAND, "clear-history"), "unknown command 'clear-history'")]
        client.send_key.assert_not_called()

    @pytest.mark.asyncio
    async def test_same_target_is_serialized(self):
        client = _client()
        order = []

        async def literal(target, text):
            order.append(f"start {text}")
            await asyncio.sleep(0.01)
            order.append(f"end {text}")
            return True

        client.send_literal = literal
        sender = KeySender(client, pause=0)

        await asyncio.gather(sender.send("work:1", "a"), sender.send("work:1", "b"))

        assert order == ["start a", "end a", "start b", "end b"]
