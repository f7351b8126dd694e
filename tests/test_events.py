"""Tests for EventEmitter and event records."""

import asyncio
import json

import pytest

from tmuxcomposer.events import ERROR, SESSION_CHANGED, EventEmitter, stdout_sink


class TestEventEmitter:
    def test_record_shape(self):
        emitter = EventEmitter(context={"script": "watch-session"}, session_id="run-1")
        received = []
        emitter.add_sink(received.append)

        emitter.update_context(sessionName="work")
        event = emitter.emit(SESSION_CHANGED, {"windows": []})

        data = event.to_dict()
        assert received == [event]
        assert data["event"] == "session-changed"
        assert data["sessionId"] == "run-1"
        assert data["payload"] == {
            "context": {"script": "watch-session", "sessionName": "work"},
            "details": {"windows": []},
        }
        assert data["timestamp"].endswith("+00:00")

    def test_failing_sink_is_isolated(self):
        emitter = EventEmitter()
        received = []

        def broken(event):
            raise RuntimeError("sink down")

        emitter.add_sink(broken)
        emitter.add_sink(received.append)

        emitter.emit("x")

        assert len(received) == 1

    def test_remove_sink(self):
        emitter = EventEmitter()
        received = []
        emitter.add_sink(received.append)
        emitter.remove_sink(received.append)

        emitter.emit("x")

        assert received == []

    def test_emit_error_details(self):
        emitter = EventEmitter()

        event = emitter.emit_error("Error capturing work:0", ValueError("bad"))

        assert event.event == ERROR
        assert event.payload.details == {
            "message": "Error capturing work:0",
            "error": "bad",
            "errorType": "ValueError",
        }

    @pytest.mark.asyncio
    async def test_async_sink_is_scheduled(self):
        emitter = EventEmitter()
        received = []

        async def sink(event):
            received.append(event.event)

        emitter.add_sink(sink)
        emitter.emit("window-content")
        await asyncio.sleep(0)

        assert received == ["window-content"]


def test_stdout_sink_writes_json_line(capsys):
    emitter = EventEmitter(session_id="run-1")
    emitter.add_sink(stdout_sink)

    emitter.emit("session-control", {"sessionName": "work", "isHumanControlled": True})

    line = capsys.readouterr().out
    assert line.endswith("\n")
    assert json.loads(line)["payload"]["details"]["isHumanControlled"] is True
