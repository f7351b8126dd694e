"""Tests for ControlConnector using a fake tmux process."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from tmuxcomposer.adapters.tmux.socket import SocketOptions
from tmuxcomposer.control.connector import ControlConnector
from tmuxcomposer.errors import ChannelClosedError, TmuxNotFoundError


class FakeProcess:
    """Stands in for asyncio.subprocess.Process."""

    def __init__(self):
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.stdin = MagicMock()
        self.stdin.is_closing.return_value = False
        self.stdin.drain = AsyncMock()
        self.written: list[str] = []
        self.stdin.write.side_effect = lambda data: self.written.append(data.decode())
        self.returncode = None
        self.pid = 4242
        self.kill = MagicMock(side_effect=self._exit)

    def _exit(self):
        self.returncode = -9
        if not self.stdout.at_eof():
            self.stdout.feed_eof()
        if not self.stderr.at_eof():
            self.stderr.feed_eof()

    async def wait(self):
        return self.returncode if self.returncode is not None else 0

    def emit(self, *lines: str):
        for line in lines:
            self.stdout.feed_data((line + "\n").encode())


@pytest_asyncio.fixture
async def fake_proc():
    return FakeProcess()


def make_connector(lines, closed):
    return ControlConnector(
        SocketOptions(socket_name="test"),
        "$1",
        on_line=lines.append,
        on_closed=lambda: closed.append(True),
        settle_delay=0,
    )


class TestControlConnector:
    @pytest.mark.asyncio
    async def test_connect_spawns_control_mode_and_writes_initial_commands(self, fake_proc):
        lines, closed = [], []
        connector = make_connector(lines, closed)

        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock, return_value=fake_proc) as mock_exec:
            assert await connector.connect(["list-panes -s"]) is True

        assert mock_exec.call_args[0] == ("tmux", "-L", "test", "-C", "attach-session", "-t", "$1")
        assert fake_proc.written == ["list-panes -s\n"]
        assert connector.is_connected
        await connector.disconnect()

    @pytest.mark.asyncio
    async def test_lines_are_delivered_and_eof_closes_once(self, fake_proc):
        lines, closed = [], []
        connector = make_connector(lines, closed)

        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock, return_value=fake_proc):
            await connector.connect()

        fake_proc.emit("%begin 1 1 1", "", "%end 1 1 1")
        fake_proc.stdout.feed_eof()
        await asyncio.wait_for(connector.wait_closed(), timeout=1)

        assert lines == ["%begin 1 1 1", "%end 1 1 1"]
        assert closed == [True]
        assert connector.is_connected is False

        await connector.disconnect()
        assert closed == [True]

    @pytest.mark.asyncio
    async def test_write_after_close_raises(self, fake_proc):
        connector = make_connector([], [])

        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock, return_value=fake_proc):
            await connector.connect()
        await connector.disconnect()

        with pytest.raises(ChannelClosedError):
            await connector.write("list-panes")

    @pytest.mark.asyncio
    async def test_write_before_connect_raises(self):
        with pytest.raises(ChannelClosedError):
            await make_connector([], []).write("list-panes")

    @pytest.mark.asyncio
    async def test_fatal_stderr_tears_down(self, fake_proc):
        closed = []
        connector = make_connector([], closed)

        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock, return_value=fake_proc):
            await connector.connect()

        fake_proc.stderr.feed_data(b"lost server\n")
        await asyncio.wait_for(connector.wait_closed(), timeout=1)

        assert closed == [True]
        fake_proc.kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_broken_pipe_on_write(self, fake_proc):
        closed = []
        connector = make_connector([], closed)
        fake_proc.stdin.drain.side_effect = BrokenPipeError()

        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock, return_value=fake_proc):
            assert await connector.connect(["list-panes"]) is False

        assert closed == [True]
        assert connector.is_connected is False

    @pytest.mark.asyncio
    async def test_missing_tmux_raises(self):
        connector = make_connector([], [])

        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock, side_effect=FileNotFoundError()):
            with pytest.raises(TmuxNotFoundError):
                await connector.connect()
