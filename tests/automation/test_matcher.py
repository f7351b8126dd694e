"""Tests for trigger rules and MatcherEngine."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from tmuxcomposer.automation.keys import KeySender, SendReport
from tmuxcomposer.automation.matcher import (
    ExecutionRecord,
    MatchContext,
    MatcherEngine,
    MatchState,
    TriggerRule,
    find_in_order,
    load_rules,
)
from tmuxcomposer.errors import SessionInvalidatedError
from tmuxcomposer.telemetry import metrics

TRUST = {
    "name": "trust-folder",
    "trigger": ["Do you trust the files in this folder?", "Enter to confirm · Esc to exit"],
    "wrapped_trigger": ["Do you trust the files in this", "Enter to confirm · Esc to exit"],
    "response": "<Enter>",
}

TRUST_SCREEN = """\
╭──────────────────────────────────────────────╮
│ Do you trust the files in this folder?       │
│                                              │
│ ❯ 1. Yes, proceed                            │
│   2. No, exit                                │
╰──────────────────────────────────────────────╯
  Enter to confirm · Esc to exit
"""


@pytest.fixture
def sender():
    sender = MagicMock(spec=KeySender)
    sender.send = AsyncMock(side_effect=lambda target, response: SendReport(target=target))
    return sender


def engine_for(sender, *raw, **kwargs) -> MatcherEngine:
    return MatcherEngine(load_rules(list(raw)), sender, **kwargs)


def result_for(results, name):
    return next(result for result in results if result.rule == name)


class TestFindInOrder:
    def test_earliest_positions(self):
        lines = ["a b a", "c b"]
        assert find_in_order(lines, ["a", "b"]) == [(0, 0), (0, 2)]

    def test_same_line_respects_column(self):
        assert find_in_order(["b then a"], ["a", "b"]) is None
        assert find_in_order(["b then a", "b"], ["a", "b"]) == [(0, 7), (1, 0)]


class TestTriggerRule:
    def test_defaults(self):
        rule = TriggerRule(name="r", trigger=["x"], response="<Enter>")
        assert rule.run_once is True
        assert rule.mode == "all"
        assert rule.applies_to_mode("plan") is True

    def test_invalid_mode(self):
        with pytest.raises(ValidationError):
            TriggerRule(name="r", trigger=["x"], response="<Enter>", mode="review")

    def test_blank_fragment(self):
        with pytest.raises(ValidationError):
            TriggerRule(name="r", trigger=["  "], response="<Enter>")

    def test_leading_space_kept(self):
        rule = TriggerRule(name="r", trigger=[" ? for shortcuts"], response="<Enter>")
        assert rule.trigger == [" ? for shortcuts"]

    def test_paste_buffer_rules_by_name(self):
        rule = TriggerRule(name="inject-initial-context-act", trigger=["x"], response="{paste-buffer}")
        assert rule.needs_paste_buffer is True

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="Duplicate matcher name"):
            load_rules([TRUST, TRUST])

    def test_builtin_table_loads(self):
        names = [rule.name for rule in load_rules()]
        assert names[0] == "trust-folder"
        assert "ensure-plan-mode" in names


class TestMatcherEngine:
    @pytest.mark.asyncio
    async def test_single_fragment_fires(self, sender):
        engine = engine_for(sender, {"name": "shortcuts", "trigger": ["? for shortcuts"], "response": "<Enter>"})

        results = await engine.evaluate(MatchContext("work", "0"), "> \n  ? for shortcuts\n")

        result = results[0]
        assert result.fired
        assert result.trail == [MatchState.IDLE, MatchState.CANDIDATE, MatchState.CONFIRMED, MatchState.FIRED]
        sender.send.assert_awaited_once_with("work:0", "<Enter>")
        assert metrics.get_counter("automation.fired", {"rule": "shortcuts"}) == 1

    @pytest.mark.asyncio
    async def test_ordered_fragments_across_box(self, sender):
        engine = engine_for(sender, TRUST)

        results = await engine.evaluate(MatchContext("work", "0"), TRUST_SCREEN)

        assert results[0].fired
        assert results[0].trigger_used == "trigger"

    @pytest.mark.asyncio
    async def test_out_of_order_stays_candidate(self, sender):
        engine = engine_for(sender, TRUST)
        screen = "Enter to confirm · Esc to exit\nDo you trust the files in this folder?\n"

        result = (await engine.evaluate(MatchContext("work", "0"), screen))[0]

        assert result.state is MatchState.REJECTED
        assert result.trail == [MatchState.IDLE, MatchState.CANDIDATE, MatchState.REJECTED]
        sender.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_gate_fragment_must_be_visible(self, sender):
        engine = engine_for(sender, TRUST)
        scrollback = AsyncMock(return_value=TRUST_SCREEN)

        result = (await engine.evaluate(
            MatchContext("work", "0", load_scrollback=scrollback),
            "Do you trust the files in this folder?\n",
        ))[0]

        assert result.trail == [MatchState.IDLE, MatchState.REJECTED]
        scrollback.assert_not_called()

    @pytest.mark.asyncio
    async def test_confirmation_uses_scrollback(self, sender):
        engine = engine_for(sender, TRUST)
        scrollback = AsyncMock(return_value=TRUST_SCREEN)

        result = (await engine.evaluate(
            MatchContext("work", "0", load_scrollback=scrollback),
            "  Enter to confirm · Esc to exit\n",
        ))[0]

        assert result.fired
        scrollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_wrapped_trigger_fallback(self, sender):
        engine = engine_for(sender, TRUST)
        screen = "Do you trust the files in this\nfolder?\nEnter to confirm · Esc to exit\n"

        result = (await engine.evaluate(MatchContext("work", "0"), screen))[0]

        assert result.fired
        assert result.trigger_used == "wrapped_trigger"

    @pytest.mark.asyncio
    async def test_run_once_per_window(self, sender):
        engine = engine_for(sender, TRUST)

        await engine.evaluate(MatchContext("work", "0"), TRUST_SCREEN)
        again = (await engine.evaluate(MatchContext("work", "0"), TRUST_SCREEN))[0]
        other = (await engine.evaluate(MatchContext("work", "1"), TRUST_SCREEN))[0]

        assert again.reason == "already executed"
        assert other.fired
        assert sender.send.await_count == 2

    @pytest.mark.asyncio
    async def test_repeatable_rule(self, sender):
        engine = engine_for(sender, {**TRUST, "run_once": False})

        await engine.evaluate(MatchContext("work", "0"), TRUST_SCREEN)
        await engine.evaluate(MatchContext("work", "0"), TRUST_SCREEN)

        assert sender.send.await_count == 2
        assert len(engine.records) == 0

    @pytest.mark.asyncio
    async def test_mode_filter(self, sender):
        rule = {"name": "ensure-plan-mode", "trigger": ["? for shortcuts"], "response": "<S-Tab><S-Tab>", "mode": "plan"}
        engine = engine_for(sender, rule)

        act = (await engine.evaluate(MatchContext("work", "0", mode="act"), "? for shortcuts"))[0]
        unset = (await engine.evaluate(MatchContext("work", "0"), "? for shortcuts"))[0]
        plan = (await engine.evaluate(MatchContext("work", "0", mode="plan"), "? for shortcuts"))[0]

        assert act.reason == "mode 'act'"
        assert unset.state is MatchState.REJECTED
        assert plan.fired

    @pytest.mark.asyncio
    async def test_skip(self, sender):
        engine = engine_for(sender, TRUST, skip={"trust-folder": True})

        result = (await engine.evaluate(MatchContext("work", "0"), TRUST_SCREEN))[0]

        assert result.reason == "skipped"

    @pytest.mark.asyncio
    async def test_skip_false_keeps_rule(self, sender):
        engine = engine_for(sender, TRUST, skip={"trust-folder": False})

        result = (await engine.evaluate(MatchContext("work", "0"), TRUST_SCREEN))[0]

        assert result.fired

    @pytest.mark.asyncio
    async def test_leading_space_must_match(self, sender):
        engine = engine_for(sender, {"name": "shortcuts", "trigger": [" ? for shortcuts"], "response": "<Enter>"})

        glued = (await engine.evaluate(MatchContext("work", "0"), "x? for shortcuts\n"))[0]
        spaced = (await engine.evaluate(MatchContext("work", "1"), "  ? for shortcuts\n"))[0]

        assert not glued.fired
        assert spaced.fired

    @pytest.mark.asyncio
    async def test_paste_buffer_precondition(self, sender):
        rule = {"name": "inject", "trigger": ["? for shortcuts"], "response": "{paste-buffer}<Enter>",
                "requires_paste_buffer": True}
        engine = engine_for(sender, rule)

        empty = (await engine.evaluate(
            MatchContext("work", "0", paste_buffer_ready=AsyncMock(return_value=False)), "? for shortcuts"
        ))[0]
        ready = (await engine.evaluate(
            MatchContext("work", "0", paste_buffer_ready=AsyncMock(return_value=True)), "? for shortcuts"
        ))[0]

        assert empty.reason == "paste buffer empty"
        assert ready.fired

    @pytest.mark.asyncio
    async def test_several_rules_fire_in_one_pass(self, sender):
        engine = engine_for(
            sender,
            {"name": "first", "trigger": ["ready"], "response": "a"},
            {"name": "second", "trigger": ["ready"], "response": "b"},
        )

        results = await engine.evaluate(MatchContext("work", "0"), "ready")

        assert [result.fired for result in results] == [True, True]

    @pytest.mark.asyncio
    async def test_invalid_marker_raises_first(self, sender):
        engine = engine_for(sender, {"name": "shortcuts", "trigger": ["? for shortcuts"], "response": "<Enter>"})

        with pytest.raises(SessionInvalidatedError):
            await engine.evaluate(MatchContext("work", "2"), "? for shortcuts\nPlease run /login\n")

        sender.send.assert_not_called()


class TestExecutionRecord:
    def test_forget_window(self):
        records = ExecutionRecord()
        records.add("work", "0", "a")
        records.add("work", "1", "a")

        records.forget_window("work", "0")

        assert not records.has("work", "0", "a")
        assert records.has("work", "1", "a")
