"""Errors raised while routing packets through a stream pipeline."""

from __future__ import annotations


class StreamError(Exception):
    """Base class for stream routing errors."""

    default_message = "stream error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class IgnorePacket(StreamError):
    """Raised by a filter that does not want a packet."""

    default_message = "ignore packet"


class RecvStreamClosed(StreamError):
    default_message = "receive stream closed"


class NoHandlerFound(StreamError):
    default_message = "no handler found for packet"


class NotATTY(StreamError):
    default_message = "not a tty"


class SendStreamBlocked(StreamError):
    default_message = "send stream is blocked"


class UninitializedStageError(StreamError):
    """A stage, or a part of one, was used before being set up."""

    def __init__(self, stage: str) -> None:
        self.stage = stage
        super().__init__(f"uninitialized stage: {stage}")