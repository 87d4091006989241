"""Error types raised by the runtime."""

from __future__ import annotations


class InvokError(Exception):
    """Base class for every runtime failure."""

    prefix = ""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.prefix}{self.message}"


class ExecError(InvokError):
    """A failure while executing or building something."""


class SystemFailureError(InvokError):
    """A failure talking to the host system, such as the container engine."""

    prefix = "System Error: "


class RedisError(InvokError):
    """A failure talking to the Redis store."""

    prefix = "Redis Error: "


class SerializationError(InvokError):
    """A failure encoding or decoding persisted state."""

    prefix = "Serialization Error: "