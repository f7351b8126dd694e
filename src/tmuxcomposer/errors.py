"""Exception types raised across tmuxcomposer."""


class TmuxComposerError(Exception):
    """Base class for tmuxcomposer errors."""


class TmuxNotFoundError(TmuxComposerError):
    """The tmux binary could not be started."""


class ChannelClosedError(TmuxComposerError):
    """Write attempted on a control channel that is already closed."""


class ReconnectExhaustedError(TmuxComposerError):
    """The reconnect attempt budget was used up."""

    def __init__(self, attempts: int):
        super().__init__(f"gave up after {attempts} reconnect attempts")
        self.attempts = attempts


class SessionInvalidatedError(TmuxComposerError):
    """The automated agent reported that its login session is no longer valid."""

    def __init__(self, session: str, window: str, marker: str):
        super().__init__(f"agent session invalidated in {session}:{window} ({marker!r})")
        self.session = session
        self.window = window
        self.marker = marker
