from __future__ import annotations


class ControlRoomError(Exception):
    """Base exception for this project."""


class ConfigError(ControlRoomError):
    """Raised when configuration is invalid or incomplete."""

    def __init__(self, message: str, *, path: str | None = None):
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path


class ModelEndpointError(ControlRoomError):
    """The model endpoint failed (network, auth, malformed stream).

    This is the only failure class that terminates a run.
    """


class LoopAbortedError(ControlRoomError):
    """Cancellation was observed by the tool-call loop."""

    def __init__(self, message: str = "Run cancelled", *, partial_text: str = ""):
        super().__init__(message)
        self.partial_text = partial_text
