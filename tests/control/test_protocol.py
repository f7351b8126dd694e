"""Tests for control-mode line decoding."""

import pytest

from tmuxcomposer.control.protocol import (
    Exit,
    LayoutChange,
    PaneDescriptor,
    ProbeReply,
    ReplyBegin,
    ReplyEnd,
    SessionsChanged,
    SessionWindowChanged,
    WindowAdd,
    WindowClose,
    WindowRenamed,
    decode_line,
    list_panes_command,
    parse_layout_size,
    parse_pane_line,
    probe_command,
)


class TestNotifications:
    """Lines outside a reply block."""

    def test_begin(self):
        assert decode_line("%begin 1700000000 12 1", in_reply=False) == ReplyBegin(command_number="12")

    def test_window_add(self):
        assert decode_line("%window-add @7", in_reply=False) == WindowAdd("@7")

    @pytest.mark.parametrize("verb", ["%window-close", "%unlinked-window-close"])
    def test_window_close(self, verb):
        assert decode_line(f"{verb} @7", in_reply=False) == WindowClose("@7")

    def test_window_renamed_keeps_spaces(self):
        assert decode_line("%window-renamed @2 my editor", in_reply=False) == WindowRenamed("@2", "my editor")

    def test_layout_change_size(self):
        note = decode_line("%layout-change @2 b25d,120x40,0,0,2 b25d,120x40,0,0,2 *", in_reply=False)

        assert isinstance(note, LayoutChange)
        assert (note.width, note.height) == (120, 40)

    def test_layout_change_unparseable_size(self):
        note = decode_line("%layout-change @2 garbage", in_reply=False)

        assert isinstance(note, LayoutChange)
        assert note.width is None

    def test_session_window_changed(self):
        assert decode_line("%session-window-changed $1 @3", in_reply=False) == SessionWindowChanged("$1", "@3")

    def test_sessions_changed(self):
        assert decode_line("%sessions-changed", in_reply=False) == SessionsChanged()

    def test_exit(self):
        assert decode_line("%exit server exited", in_reply=False) == Exit("server exited")

    @pytest.mark.parametrize("line", [
        "%output %1 hello\\015\\012",
        "%client-detached /dev/ttys001",
        "%paste-buffer-changed buffer0",
        "plain text",
    ])
    def test_ignored(self, line):
        assert decode_line(line, in_reply=False) is None


class TestReplyLines:
    """Lines inside a %begin/%end block."""

    def test_pane_descriptor(self):
        line = "PANE %5 $1:2.0 my editor claude 80x24 @3 1 0"

        assert decode_line(line, in_reply=True) == PaneDescriptor(
            pane_id="%5",
            session_id="$1",
            window_index="2",
            pane_index="0",
            window_name="my editor",
            command="claude",
            width=80,
            height=24,
            window_id="@3",
            pane_active=True,
            window_active=False,
        )

    def test_probe_reply(self):
        assert decode_line("CHECK %5 claude", in_reply=True) == ProbeReply("%5", "claude")

    def test_end_and_error(self):
        assert decode_line("%end 1700000000 12 1", in_reply=True) == ReplyEnd(error=False)
        assert decode_line("%error 1700000000 12 1", in_reply=True) == ReplyEnd(error=True)

    def test_notification_verbs_inside_reply_are_not_notifications(self):
        assert decode_line("%window-add @9", in_reply=True) is None

    def test_malformed_pane_line(self):
        assert parse_pane_line("PANE %5 $1:2.0 oops") is None


class TestCommands:
    def test_list_panes_command_is_scoped(self):
        command = list_panes_command("$1")

        assert command.startswith("list-panes -s -t '$1' -F ")
        assert "#{pane_current_command}" in command

    def test_probe_command(self):
        assert probe_command("$1") == "list-panes -s -t '$1' -F \"CHECK #{pane_id} #{pane_current_command}\""


def test_parse_layout_size():
    assert parse_layout_size("b25d,80x24,0,0,2") == (80, 24)
    assert parse_layout_size("nothing") is None
